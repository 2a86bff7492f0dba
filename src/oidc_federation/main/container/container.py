from dependency_injector import containers, providers

from oidc_federation.authentication.federation_service import FederationService
from oidc_federation.authentication.identity_resolver import IdentityResolver
from oidc_federation.authentication.oidc_client import build_client_factory
from oidc_federation.issuers.issuer import IssuerRegistry
from oidc_federation.roles.group_role_mapper import GroupRoleMapper
from oidc_federation.sessions.session_store import SessionAttributeStore
from oidc_federation.users.user_repo import UsersRepository
from oidc_federation.users.username_allocator import UsernameAllocator


class Container(containers.DeclarativeContainer):
    # Supplied per request
    settings = providers.Dependency()
    session = providers.Dependency()
    redis_client = providers.Dependency()
    session_id = providers.Dependency(instance_of=str)

    # Repositories
    user_repo = providers.Factory(UsersRepository, session=session)

    # Session
    session_store = providers.Factory(
        SessionAttributeStore,
        redis_client=redis_client,
        session_id=session_id,
        ttl_seconds=settings.provided.session_ttl_seconds,
    )

    # Federation
    issuer_registry = providers.Factory(IssuerRegistry.from_settings, settings)
    identity_resolver = providers.Factory(IdentityResolver, user_repo=user_repo)
    username_allocator = providers.Factory(
        UsernameAllocator,
        user_repo=user_repo,
        use_real_name=settings.provided.oidc_use_real_name_as_username,
        use_email_name=settings.provided.oidc_use_email_name_as_username,
    )
    group_role_mapper = providers.Factory(GroupRoleMapper, group_store=user_repo)
    client_factory = providers.Factory(
        build_client_factory,
        redirect_uri=settings.provided.redirect_uri,
        clock_leeway_seconds=settings.provided.oidc_clock_leeway_seconds,
    )
    federation_service = providers.Factory(
        FederationService,
        issuers=issuer_registry,
        session_store=session_store,
        identity_resolver=identity_resolver,
        username_allocator=username_allocator,
        group_role_mapper=group_role_mapper,
        client_factory=client_factory,
        login_url=settings.provided.login_url,
        issuer_selection_url=settings.provided.issuer_selection_url,
        migrate_by_email=settings.provided.oidc_migrate_users_by_email,
        migrate_by_username=settings.provided.oidc_migrate_users_by_username,
        force_logout=settings.provided.oidc_force_logout,
    )
