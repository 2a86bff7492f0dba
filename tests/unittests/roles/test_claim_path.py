from types import SimpleNamespace

import pytest

from oidc_federation.roles.claim_path import resolve_claim_path


def test_list_at_end_of_path_is_returned():
    claims = {"realm_access": {"roles": ["admin", "editor"]}}

    assert resolve_claim_path(claims, ["realm_access", "roles"]) == ["admin", "editor"]


def test_scalar_at_end_of_path_is_wrapped():
    claims = {"department": "finance"}

    assert resolve_claim_path(claims, ["department"]) == ["finance"]


def test_tuple_is_returned_as_list():
    assert resolve_claim_path({"roles": ("a", "b")}, ["roles"]) == ["a", "b"]


@pytest.mark.parametrize(
    "claims",
    [
        {},
        {"realm_access": None},
        {"realm_access": {}},
        {"realm_access": {"roles": None}},
        None,
    ],
)
def test_missing_or_null_nodes_resolve_to_nothing(claims):
    assert resolve_claim_path(claims, ["realm_access", "roles"]) == []


def test_attribute_style_objects_are_walked_like_mappings():
    claims = SimpleNamespace(realm_access=SimpleNamespace(roles=["admin"]))

    assert resolve_claim_path(claims, ["realm_access", "roles"]) == ["admin"]


def test_mixed_mapping_and_attribute_nodes():
    claims = {"resource_access": SimpleNamespace(wiki={"roles": ["reader"]})}

    assert resolve_claim_path(claims, ["resource_access", "wiki", "roles"]) == ["reader"]


def test_empty_path_returns_root_wrapped():
    assert resolve_claim_path("admin", []) == ["admin"]


@pytest.mark.parametrize(
    "claims, path",
    [
        ({"realm_access": "x"}, ["realm_access", "upper"]),
        ({"groups": ["admin"]}, ["groups", "index"]),
        ({"roles": ("a",)}, ["roles", "count"]),
        ({"level": 3}, ["level", "real"]),
        ({"active": True}, ["active", "imag"]),
    ],
)
def test_scalars_and_lists_have_no_named_children(claims, path):
    assert resolve_claim_path(claims, path) == []
