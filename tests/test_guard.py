"""Tests for route guard decisions."""

from types import SimpleNamespace

import pytest

from services.guard import (
    ACCESS_DENIED_NOTICE,
    AUTH_REQUIRED_NOTICE,
    LIMITED_ACCESS_NOTICE,
    LIMITED_MEMBERSHIP_NOTICE,
    SESSION_ENDED_NOTICE,
    GuardStatus,
    evaluate_route,
    is_unapproved_allowed,
    normalize_path,
    surface_for_path,
)
from services.permission_registry import PermissionSet, resolve_permissions
from services.roles import Surface


def actor(role="tradie", company_id=None, is_approved=False):
    return SimpleNamespace(role=role, company_id=company_id, is_approved=is_approved)


def test_pending_until_actor_is_resolved():
    decision = evaluate_route(None, "/cart", resolved=False)
    assert decision.status is GuardStatus.PENDING
    assert decision.redirect_to is None
    assert decision.notice is None


@pytest.mark.parametrize(
    "path",
    ["/login", "/register", "/verify-email", "/invitations/verify/abc123", "/tradie-register"],
)
def test_public_paths_are_open_to_anyone(path):
    assert evaluate_route(None, path).allowed


def test_anonymous_visitor_is_sent_to_login():
    decision = evaluate_route(None, "/cart")
    assert decision.denied
    assert decision.redirect_to == "/login"
    assert decision.notice == AUTH_REQUIRED_NOTICE


def test_anonymous_permissions_never_open_tradie_pages():
    decision = evaluate_route(None, "/parts", permissions=PermissionSet.anonymous())
    assert decision.denied
    assert decision.redirect_to == "/login"


def test_session_ended_notice_right_after_logout():
    decision = evaluate_route(None, "/mobile", just_logged_out=True)
    assert decision.redirect_to == "/login"
    assert decision.notice == SESSION_ENDED_NOTICE


@pytest.mark.parametrize(
    "who, path, home",
    [
        (actor("tradie", 1, True), "/pm/dashboard", "/mobile"),
        (actor("tradie", 1, True), "/supplier/orders", "/mobile"),
        (actor("project_manager", 1), "/mobile", "/pm/dashboard"),
        (actor("project_manager", 1), "/cart", "/pm/dashboard"),
        (actor("supplier"), "/pm/tradies", "/supplier/dashboard"),
    ],
)
def test_wrong_surface_redirects_home(who, path, home):
    decision = evaluate_route(who, path)
    assert decision.denied
    assert decision.redirect_to == home
    assert decision.notice == ACCESS_DENIED_NOTICE


@pytest.mark.parametrize(
    "who, path",
    [
        (actor("project_manager", 1), "/pm/dashboard"),
        (actor("supplier"), "/supplier/orders"),
        (actor("admin"), "/supplier"),
        (actor("tradie", 1, True), "/cart"),
        (actor("tradie", 1, True), "/jobs/42"),
    ],
)
def test_matching_surface_is_allowed(who, path):
    assert evaluate_route(who, path).allowed


def test_unknown_role_is_denied():
    decision = evaluate_route(actor("ghost"), "/mobile")
    assert decision.denied
    assert decision.redirect_to == "/login"


@pytest.mark.parametrize(
    "path",
    ["/", "/mobile", "/parts", "/parts/popular", "/search?q=pipe", "/account/profile", "/notifications", "/pending-approval"],
)
def test_limited_tradie_may_browse(path):
    assert evaluate_route(actor("tradie", 1, False), path).allowed


@pytest.mark.parametrize("path", ["/cart", "/orders", "/jobs", "/mobile/orders", "/partsx", "/accounting"])
def test_limited_tradie_is_kept_out_of_ordering(path):
    decision = evaluate_route(actor("tradie", 1, False), path)
    assert decision.denied
    assert decision.redirect_to == "/mobile"
    assert decision.notice == LIMITED_MEMBERSHIP_NOTICE


def test_independent_tradie_is_told_to_join_a_company():
    decision = evaluate_route(actor("tradie"), "/cart")
    assert decision.denied
    assert decision.notice == LIMITED_ACCESS_NOTICE
    assert decision.reason == "ApprovalRequired"


def test_server_permissions_win_over_local_resolution():
    stale = actor("tradie", 1, True)
    server = resolve_permissions("tradie", 1, False)
    assert evaluate_route(stale, "/cart", permissions=server).denied
    assert evaluate_route(stale, "/cart").allowed


def test_same_inputs_give_same_decision():
    who = actor("tradie", 1, False)
    assert evaluate_route(who, "/cart") == evaluate_route(who, "/cart")


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, "/"),
        ("", "/"),
        ("cart", "/cart"),
        ("//parts//popular/", "/parts/popular"),
        ("/search/?q=x#top", "/search"),
        ("/", "/"),
        ("/parts/../cart", "/cart"),
        ("/parts/./../orders/", "/orders"),
        ("/../../mobile", "/mobile"),
    ],
)
def test_normalize_path(raw, expected):
    assert normalize_path(raw) == expected


def test_surface_for_path():
    assert surface_for_path("/login") is None
    assert surface_for_path("/pm") is Surface.PM
    assert surface_for_path("/pmx") is Surface.MOBILE
    assert surface_for_path("/supplier/catalog") is Surface.SUPPLIER
    assert surface_for_path("/anything") is Surface.MOBILE


def test_unapproved_allow_list_matches_whole_segments():
    assert is_unapproved_allowed("/parts/valves/12")
    assert not is_unapproved_allowed("/parts-admin")
    assert not is_unapproved_allowed("/mobile/cart")


def test_decision_serializes_for_the_api():
    data = evaluate_route(None, "/cart").to_dict()
    assert data["status"] == "denied"
    assert data["redirect_to"] == "/login"
    assert data["notice"]["title"] == "Authentication Required"
    assert data["notice"]["severity"] == "destructive"


@pytest.mark.parametrize("path", ["/parts/../cart", "/parts/./../orders", "/notifications/../../jobs"])
def test_dot_segments_cannot_escape_the_allow_list(path):
    decision = evaluate_route(actor("tradie", 1, False), path)
    assert decision.denied
    assert decision.notice == LIMITED_MEMBERSHIP_NOTICE
    assert not is_unapproved_allowed(path)
