"""Tests for the capability table and permission resolver."""

from types import SimpleNamespace

import pytest

from models.enums import Role
from services.permission_registry import (
    CAPABILITY_TABLE,
    AccessLevel,
    Capability,
    PermissionSet,
    access_message,
    denial_reason,
    permission_set_from_dict,
    permissions_for_actor,
    resolve_access_level,
    resolve_permissions,
)
from services.roles import home_path_for, parse_role


def test_project_manager_gets_full_company_access():
    perms = resolve_permissions("project_manager", 7, False)
    assert perms.access_level is AccessLevel.PM
    assert perms.can_manage_company
    assert perms.can_view_pricing
    assert perms.can_place_orders
    assert not perms.can_manage_catalog
    assert perms.company_id == 7


def test_independent_tradie_is_browse_only():
    perms = resolve_permissions(Role.TRADIE, None, False)
    assert perms.access_level is AccessLevel.INDEPENDENT
    assert perms.capabilities == frozenset({Capability.BROWSE_CATALOG})
    assert perms.company_id is None


@pytest.mark.parametrize("approved", [False, None])
def test_unapproved_member_is_limited(approved):
    perms = resolve_permissions("tradie", 3, approved)
    assert perms.access_level is AccessLevel.LIMITED
    assert perms.can_browse_catalog
    assert not perms.can_access_cart
    assert not perms.can_place_orders
    assert perms.company_id == 3


def test_approved_member_can_order_but_not_see_pricing():
    perms = resolve_permissions("tradie", 3, True)
    assert perms.access_level is AccessLevel.APPROVED
    assert perms.can_place_orders
    assert perms.can_access_cart
    assert perms.can_view_company_jobs
    assert perms.can_search_by_job_number
    assert not perms.can_view_pricing
    assert not perms.can_manage_company


@pytest.mark.parametrize("role", [Role.SUPPLIER, Role.ADMIN])
def test_supplier_and_admin_manage_the_catalog(role):
    perms = resolve_permissions(role, None, False)
    assert perms.access_level is AccessLevel.PM
    assert perms.can_manage_catalog
    assert not perms.can_manage_company


def test_capabilities_grow_with_access_level():
    independent = resolve_permissions("tradie", None, False).capabilities
    limited = resolve_permissions("tradie", 1, False).capabilities
    approved = resolve_permissions("tradie", 1, True).capabilities
    managing = resolve_permissions("project_manager", 1, False).capabilities
    assert independent <= limited <= approved <= managing


def test_limited_members_have_exactly_independent_capabilities():
    independent = resolve_permissions("tradie", None, False)
    limited = resolve_permissions("tradie", 1, False)
    assert limited.capabilities == independent.capabilities
    assert limited.access_level is not independent.access_level


def test_every_role_has_a_table_entry():
    roles = {role for role, _ in CAPABILITY_TABLE}
    assert roles == set(Role)
    tradie_levels = {level for role, level in CAPABILITY_TABLE if role is Role.TRADIE}
    assert tradie_levels == {AccessLevel.INDEPENDENT, AccessLevel.LIMITED, AccessLevel.APPROVED}


def test_contractor_alias_resolves_as_tradie():
    assert parse_role(" Contractor ") is Role.TRADIE
    assert resolve_access_level("contractor", 4, True) is AccessLevel.APPROVED


@pytest.mark.parametrize("role", [None, "", "ghost"])
def test_unknown_role_gets_no_capabilities(role):
    perms = resolve_permissions(role, 1, True)
    assert perms == PermissionSet.anonymous()
    assert perms.capabilities == frozenset()


def test_permissions_for_actor_reads_attributes():
    actor = SimpleNamespace(role="tradie", company_id=9, is_approved=True)
    assert permissions_for_actor(actor).access_level is AccessLevel.APPROVED
    assert permissions_for_actor(None) == PermissionSet.anonymous()


def test_permission_payload_parsing_ignores_unknown_keys():
    payload = resolve_permissions("tradie", 2, True).to_dict()
    payload["message"] = "You have full access to your company features"
    payload["something_new"] = True
    parsed = permission_set_from_dict(payload)
    assert parsed.access_level is AccessLevel.APPROVED
    assert parsed.can_place_orders
    assert parsed.company_id == 2


def test_access_messages():
    assert access_message(AccessLevel.LIMITED) == "Your company access has been limited to browse-only"
    assert access_message("nonsense") == "Loading access level..."
    assert denial_reason("independent") == "Join a company to place orders"
    assert denial_reason(AccessLevel.APPROVED) == "Insufficient permissions"


def test_home_paths():
    assert home_path_for("tradie") == "/mobile"
    assert home_path_for("supplier") == "/supplier/dashboard"
    assert home_path_for("admin") == "/supplier/dashboard"
    assert home_path_for("project_manager") == "/pm/dashboard"
    assert home_path_for("ghost") == "/login"


def test_anonymous_default_grants_nothing():
    anonymous = PermissionSet.anonymous()
    independent = resolve_permissions("tradie", None, False)

    assert not any(anonymous.allows(cap) for cap in Capability)
    assert anonymous != independent
    assert independent.allows(Capability.BROWSE_CATALOG)
