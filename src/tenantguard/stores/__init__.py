"""External collaborators: role, audit, geolocation and notification stores."""

from .audit import AuditEntry, AuditQuery, AuditStore, InMemoryAuditStore
from .geo import GeoLocation, GeoLocator, StaticGeoLocator
from .notify import LoggingNotifier, Notifier
from .roles import InMemoryRoleStore, Role, RoleStore

__all__ = [
    "AuditEntry",
    "AuditQuery",
    "AuditStore",
    "InMemoryAuditStore",
    "GeoLocation",
    "GeoLocator",
    "StaticGeoLocator",
    "LoggingNotifier",
    "Notifier",
    "InMemoryRoleStore",
    "Role",
    "RoleStore",
]
