"""Geolocation collaborator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class GeoLocation:
    country: str | None = None
    region: str | None = None
    city: str | None = None
    timezone: str | None = None
    isp: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeoLocation:
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


class GeoLocator(Protocol):
    def lookup(self, ip_address: str) -> GeoLocation | None: ...


UNKNOWN_LOCATION = GeoLocation(
    country="Unknown", region="Unknown", city="Unknown", timezone="UTC", isp="Unknown ISP"
)


class StaticGeoLocator:
    """Table-driven locator; addresses not in the table resolve to a default."""

    def __init__(
        self,
        table: dict[str, GeoLocation] | None = None,
        default: GeoLocation | None = UNKNOWN_LOCATION,
    ):
        self.table = dict(table or {})
        self.default = default
        self.lookups = 0

    def add(self, ip_address: str, location: GeoLocation) -> None:
        self.table[ip_address] = location

    def lookup(self, ip_address: str) -> GeoLocation | None:
        self.lookups += 1
        return self.table.get(ip_address, self.default)
