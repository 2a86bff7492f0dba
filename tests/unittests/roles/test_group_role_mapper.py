from uuid import uuid4

import pytest

from oidc_federation.issuers.issuer import IssuerConfig
from oidc_federation.roles.group_role_mapper import GroupChanges, GroupRoleMapper


class GroupStoreStub:
    def __init__(self, groups: set[str] | None = None):
        self.groups = set(groups or ())
        self.added: list[str] = []
        self.removed: list[str] = []

    async def get_groups(self, user_id):
        return set(self.groups)

    async def add_group(self, user_id, group):
        self.added.append(group)
        self.groups.add(group)

    async def remove_group(self, user_id, group):
        self.removed.append(group)
        self.groups.discard(group)


@pytest.fixture
def issuer_config() -> IssuerConfig:
    return IssuerConfig.model_validate(
        {
            "clientID": "wiki",
            "clientsecret": "secret",
            "global_roles": {"property": ["realm_access", "roles"]},
            "scoped_roles": {
                "property": ["resource_access", "wiki", "roles"],
                "prefix": ["wiki_", "all_"],
            },
        }
    )


def test_desired_groups_applies_every_prefix(issuer_config):
    claims = {
        "realm_access": {"roles": ["admin"]},
        "resource_access": {"wiki": {"roles": ["editor"]}},
    }

    assert GroupRoleMapper.desired_groups(claims, issuer_config) == {
        "oidc_admin",
        "oidc_wiki_editor",
        "oidc_all_editor",
    }


def test_desired_groups_ignores_disabled_categories():
    config = IssuerConfig(client_id="wiki", client_secret="secret")

    assert GroupRoleMapper.desired_groups({"realm_access": {"roles": ["x"]}}, config) == set()


async def test_adds_and_removes_only_federated_groups(issuer_config):
    store = GroupStoreStub({"sysop", "oidc_old", "oidc_admin"})
    mapper = GroupRoleMapper(store)

    changes = await mapper.compute_and_apply_groups(
        uuid4(), {"realm_access": {"roles": ["admin", "auditor"]}}, issuer_config
    )

    assert changes == GroupChanges(added=["oidc_auditor"], removed=["oidc_old"])
    assert store.groups == {"sysop", "oidc_admin", "oidc_auditor"}


async def test_second_run_with_same_claims_changes_nothing(issuer_config):
    store = GroupStoreStub({"bureaucrat"})
    mapper = GroupRoleMapper(store)
    claims = {"realm_access": {"roles": ["admin"]}}
    user_id = uuid4()

    first = await mapper.compute_and_apply_groups(user_id, claims, issuer_config)
    second = await mapper.compute_and_apply_groups(user_id, claims, issuer_config)

    assert first.changed
    assert not second.changed
    assert store.groups == {"bureaucrat", "oidc_admin"}


async def test_missing_claims_leave_groups_untouched(issuer_config):
    store = GroupStoreStub({"oidc_admin"})
    mapper = GroupRoleMapper(store)

    changes = await mapper.compute_and_apply_groups(uuid4(), None, issuer_config)

    assert not changes.changed
    assert store.groups == {"oidc_admin"}
    assert store.removed == []


async def test_missing_config_leaves_groups_untouched():
    store = GroupStoreStub({"oidc_admin"})
    mapper = GroupRoleMapper(store)

    changes = await mapper.compute_and_apply_groups(
        uuid4(), {"realm_access": {"roles": []}}, None
    )

    assert not changes.changed
    assert store.groups == {"oidc_admin"}


async def test_claims_without_roles_remove_all_federated_groups(issuer_config):
    store = GroupStoreStub({"oidc_admin", "oidc_wiki_editor", "sysop"})
    mapper = GroupRoleMapper(store)

    changes = await mapper.compute_and_apply_groups(uuid4(), {}, issuer_config)

    assert changes.removed == ["oidc_admin", "oidc_wiki_editor"]
    assert store.groups == {"sysop"}


async def test_role_matching_local_group_name_only_adds_prefixed_group(issuer_config):
    store = GroupStoreStub({"sysop"})
    mapper = GroupRoleMapper(store)

    changes = await mapper.compute_and_apply_groups(
        uuid4(), {"realm_access": {"roles": "sysop"}}, issuer_config
    )

    assert changes == GroupChanges(added=["oidc_sysop"], removed=[])
    assert store.removed == []
    assert store.groups == {"sysop", "oidc_sysop"}


def test_path_into_a_list_yields_no_groups():
    config = IssuerConfig(
        client_id="wiki",
        client_secret="secret",
        global_roles={"property": ["groups", "index"]},
    )

    assert GroupRoleMapper.desired_groups({"groups": ["admin"]}, config) == set()
