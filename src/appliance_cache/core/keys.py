# Copyright (c) Kirky.X. 2025. All rights reserved.
from dataclasses import dataclass
from enum import Enum

UNKNOWN = "unknown"
KEY_SEPARATOR = ":"


class ResourceType(Enum):
    """Known resource categories and their default cache lifetimes in seconds."""

    FIREWALL = "firewall"
    NETWORK = "network"
    SYSTEM = "system"
    BACKUP = "backup"
    DHCP = "dhcp"
    UNKNOWN = UNKNOWN

    @classmethod
    def from_segment(cls, segment: str) -> "ResourceType":
        try:
            return cls(segment)
        except ValueError:
            return cls.UNKNOWN

    @property
    def default_ttl(self):
        """Default TTL for the category, `None` for `UNKNOWN`."""
        return _RESOURCE_TTLS[self]


_RESOURCE_TTLS = {
    ResourceType.FIREWALL: 300,
    ResourceType.NETWORK: 600,
    ResourceType.SYSTEM: 1800,
    ResourceType.BACKUP: 3600,
    # leases churn quickly
    ResourceType.DHCP: 120,
    ResourceType.UNKNOWN: None,
}


@dataclass(frozen=True)
class CacheKey:
    raw: str
    pattern: str
    resource: str
    operation: str

    @property
    def resource_type(self) -> ResourceType:
        return ResourceType.from_segment(self.resource)


def classify_key(raw: str) -> CacheKey:
    """Split a flat `:`-delimited key into its grouping components.

    `cache:firewall:rules:all` yields pattern `cache:firewall:rules:*`,
    resource `firewall` and operation `rules`. Keys with too few segments
    degrade to `unknown` rather than failing.
    """
    parts = raw.split(KEY_SEPARATOR)
    return CacheKey(
        raw=raw,
        pattern=KEY_SEPARATOR.join(parts[:-1]) + KEY_SEPARATOR + "*",
        resource=parts[1] if len(parts) > 1 and parts[1] else UNKNOWN,
        operation=parts[2] if len(parts) > 2 and parts[2] else UNKNOWN,
    )


def resource_of(raw: str) -> str:
    """Resource segment of a raw key, as used for statistics grouping."""
    return classify_key(raw).resource
