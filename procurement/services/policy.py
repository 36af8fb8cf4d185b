"""
Capability checks for workflow operations.

Every privileged service function calls ``ensure_capability`` once, before it
reads or writes anything, with the actor handed down by the route layer.

Roles:
  admin       everything
  encoder     authors plans and purchase requests
  bac         Bids and Awards Committee: approves requests, issues orders
  inspector   inspection & acceptance reports
  accountant  disbursement vouchers
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

import structlog

from procurement.exceptions import Forbidden

logger = structlog.get_logger()

ROLES = ("admin", "encoder", "bac", "inspector", "accountant")

CAPABILITIES: dict[str, frozenset[str]] = {
    "plan:create": frozenset({"admin", "encoder", "bac"}),
    "pr:create": frozenset({"admin", "encoder", "bac"}),
    "pr:submit": frozenset({"admin", "encoder", "bac"}),
    "pr:approve": frozenset({"admin", "bac"}),
    "pr:return": frozenset({"admin", "bac"}),
    "pr:release": frozenset({"admin"}),
    "po:create": frozenset({"admin", "bac"}),
    "po:approve": frozenset({"admin", "bac"}),
    "po:cancel": frozenset({"admin", "bac"}),
    "iar:create": frozenset({"admin", "inspector"}),
    "iar:edit": frozenset({"admin", "inspector"}),
    "dv:create": frozenset({"admin", "accountant"}),
    "dv:edit": frozenset({"admin", "accountant"}),
    "dv:process": frozenset({"admin", "accountant"}),
}


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    roles: frozenset[str] = field(default_factory=frozenset)
    email: Optional[str] = None


def ensure_capability(actor: Optional[Actor], capability: str) -> Actor:
    if actor is None or not actor.roles:
        raise Forbidden(
            "No identity or role set supplied for this operation",
            {"capability": capability},
        )

    allowed = CAPABILITIES.get(capability)
    if allowed is None:
        raise KeyError(f"Unknown capability '{capability}'")

    if not actor.roles & allowed:
        logger.warning(
            "capability_denied",
            capability=capability,
            user_id=str(actor.user_id),
            roles=sorted(actor.roles),
        )
        raise Forbidden(
            f"Roles {sorted(actor.roles)} cannot perform '{capability}'",
            {"capability": capability, "required": sorted(allowed)},
        )
    return actor
