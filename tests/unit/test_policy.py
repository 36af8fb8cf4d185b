import uuid

import pytest

from procurement.exceptions import Forbidden
from procurement.services.policy import Actor, CAPABILITIES, ensure_capability


def _actor(*roles):
    return Actor(user_id=uuid.uuid4(), roles=frozenset(roles))


def test_missing_actor_is_forbidden():
    with pytest.raises(Forbidden):
        ensure_capability(None, "po:create")


def test_empty_role_set_is_forbidden():
    with pytest.raises(Forbidden):
        ensure_capability(_actor(), "pr:create")


@pytest.mark.parametrize("role", ["admin", "bac"])
def test_po_creation_roles(role):
    actor = _actor(role)
    assert ensure_capability(actor, "po:create") is actor


@pytest.mark.parametrize("role", ["encoder", "inspector", "accountant"])
def test_po_creation_denied_for_other_roles(role):
    with pytest.raises(Forbidden) as exc_info:
        ensure_capability(_actor(role), "po:create")
    assert exc_info.value.details["required"] == ["admin", "bac"]


def test_voucher_processing_is_accountant_or_admin():
    ensure_capability(_actor("accountant"), "dv:process")
    with pytest.raises(Forbidden):
        ensure_capability(_actor("bac"), "dv:process")


def test_any_matching_role_is_enough():
    ensure_capability(_actor("encoder", "inspector"), "iar:create")


def test_admin_holds_every_capability():
    admin = _actor("admin")
    for capability in CAPABILITIES:
        ensure_capability(admin, capability)


def test_unknown_capability_is_a_programming_error():
    with pytest.raises(KeyError):
        ensure_capability(_actor("admin"), "po:delete")
