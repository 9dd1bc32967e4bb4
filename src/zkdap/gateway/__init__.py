"""Access gateway: resources unlocked by threshold proofs."""

from zkdap.gateway.registry import (
    AccessDecision, AccessGateway, AccessReason, Resource, ResourceRegistered,
)

__all__ = ["AccessGateway", "AccessDecision", "AccessReason", "Resource", "ResourceRegistered"]
