# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from collections.abc import AsyncIterable
from typing import Any, TypeVar
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock, Mock, patch

# project
from workflows.client.identity_client import (
    Account,
    Application,
    DeploymentValidation,
    FederatedCredential,
    IdentityProvider,
    ResourceGroupInfo,
    RoleAssignment,
    ServicePrincipal,
)

SUBSCRIPTION_ID = "f7a0a345-103e-4b6e-93b7-13d0a56fd363"
SUBSCRIPTION_NAME = "Deployments"
OTHER_SUBSCRIPTION_ID = "422f4b27-5493-4450-b308-0118e123ca89"
TENANT_ID = "6e2c1a5e-8f0a-4c1e-9a4e-0c1d2f3a4b5c"
USER_NAME = "operator@example.com"
RESOURCE_GROUP = "app-rg"
LOCATION = "eastus"
REPO = "octo/app"
DISPLAY_NAME = "octo-app-deployer"


class AsyncTestCase(IsolatedAsyncioTestCase):
    def patch_path(self, path: str, **kwargs: Any) -> MagicMock | AsyncMock:
        p = patch(path, **kwargs)
        self.addCleanup(p.stop)
        return p.start()


T = TypeVar("T")


async def async_generator(*items: T) -> AsyncIterable[T]:
    for x in items:
        if isinstance(x, Exception):
            raise x
        yield x


def mock(**kwargs: Any) -> Mock:
    m = Mock()
    for k, v in kwargs.items():
        setattr(m, k, v)
    return m


def AsyncMockClient(**kwargs: Any) -> AsyncMock:
    """An AsyncMock with the context manager methods set up to use as a client"""
    m = AsyncMock(**kwargs)
    m.__aenter__.return_value = m
    m.__aexit__.return_value = None
    return m


class FakeIdentityProvider(IdentityProvider):
    """In-memory provider. Every call is recorded in `calls` as (method name, args),
    and `fail_on` maps a method name to the exception that method should raise"""

    def __init__(
        self,
        subscription_id: str = SUBSCRIPTION_ID,
        subscription_name: str = SUBSCRIPTION_NAME,
        tenant_id: str = TENANT_ID,
        user_name: str = USER_NAME,
    ) -> None:
        self.account = Account(subscription_id, subscription_name, tenant_id, user_name)
        self.resource_groups: dict[tuple[str, str], ResourceGroupInfo] = {}
        self.applications: dict[str, Application] = {}
        self.service_principals: dict[str, ServicePrincipal] = {}
        self.federated_credentials: dict[str, list[FederatedCredential]] = {}
        self.role_assignments: list[RoleAssignment] = []
        self.resources: dict[tuple[str, str], list[str]] = {}
        self.deployment_error: str | None = None
        self.fail_on: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._next_id = 0

    def record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.fail_on:
            raise self.fail_on[method]

    def called(self, method: str) -> int:
        return sum(name == method for name, _ in self.calls)

    @property
    def create_calls(self) -> list[str]:
        return [name for name, _ in self.calls if name.startswith("create_")]

    def new_id(self) -> str:
        self._next_id += 1
        return f"00000000-0000-0000-0000-{self._next_id:012d}"

    # ===== seeding helpers ===== #
    def add_resource_group(self, name: str = RESOURCE_GROUP, location: str = LOCATION) -> ResourceGroupInfo:
        rg = ResourceGroupInfo(name, location, "Succeeded")
        self.resource_groups[(self.account.subscription_id.casefold(), name.casefold())] = rg
        return rg

    def add_application(self, display_name: str = DISPLAY_NAME) -> Application:
        app = Application(app_id=self.new_id(), object_id=self.new_id(), display_name=display_name)
        self.applications[app.app_id] = app
        return app

    def add_service_principal(self, app_id: str) -> ServicePrincipal:
        sp = ServicePrincipal(object_id=self.new_id(), app_id=app_id, type="Application")
        self.service_principals[app_id] = sp
        return sp

    def snapshot(self) -> tuple[Any, ...]:
        return (
            dict(self.resource_groups),
            dict(self.applications),
            dict(self.service_principals),
            {k: list(v) for k, v in self.federated_credentials.items()},
            list(self.role_assignments),
        )

    # ===== IdentityProvider ===== #
    async def get_account(self) -> Account:
        self.record("get_account")
        return self.account

    async def get_resource_group(self, subscription_id: str, name: str) -> ResourceGroupInfo | None:
        self.record("get_resource_group", subscription_id, name)
        return self.resource_groups.get((subscription_id.casefold(), name.casefold()))

    async def create_resource_group(self, subscription_id: str, name: str, location: str) -> ResourceGroupInfo:
        self.record("create_resource_group", subscription_id, name, location)
        rg = ResourceGroupInfo(name, location, "Succeeded")
        self.resource_groups[(subscription_id.casefold(), name.casefold())] = rg
        return rg

    async def find_applications(self, display_name: str) -> list[Application]:
        self.record("find_applications", display_name)
        return [app for app in self.applications.values() if app.display_name == display_name]

    async def get_application(self, app_id: str) -> Application | None:
        self.record("get_application", app_id)
        return self.applications.get(app_id)

    async def create_application(self, display_name: str) -> Application:
        self.record("create_application", display_name)
        app = Application(app_id=self.new_id(), object_id=self.new_id(), display_name=display_name)
        self.applications[app.app_id] = app
        return app

    async def find_service_principal(self, app_id: str) -> ServicePrincipal | None:
        self.record("find_service_principal", app_id)
        return self.service_principals.get(app_id)

    async def create_service_principal(self, app_id: str) -> ServicePrincipal:
        self.record("create_service_principal", app_id)
        sp = ServicePrincipal(object_id=self.new_id(), app_id=app_id, type="Application")
        self.service_principals[app_id] = sp
        return sp

    async def list_federated_credentials(self, app_id: str) -> list[FederatedCredential]:
        self.record("list_federated_credentials", app_id)
        return list(self.federated_credentials.get(app_id, []))

    async def create_federated_credential(self, app_id: str, credential: FederatedCredential) -> FederatedCredential:
        self.record("create_federated_credential", app_id, credential)
        existing = self.federated_credentials.setdefault(app_id, [])
        if any(c.name == credential.name for c in existing):
            raise AssertionError(f"Federated credential '{credential.name}' already exists")
        existing.append(credential)
        return credential

    async def list_role_assignments(self, principal_id: str, scope: str) -> list[RoleAssignment]:
        self.record("list_role_assignments", principal_id, scope)
        return [
            ra
            for ra in self.role_assignments
            if ra.principal_id == principal_id and ra.scope.casefold() == scope.casefold()
        ]

    async def create_role_assignment(self, principal_id: str, role: str, scope: str) -> RoleAssignment:
        self.record("create_role_assignment", principal_id, role, scope)
        ra = RoleAssignment(principal_id, role, scope, id=f"{scope}/providers/Microsoft.Authorization/{self.new_id()}")
        self.role_assignments.append(ra)
        return ra

    async def list_resources(self, subscription_id: str, resource_group: str) -> list[str]:
        self.record("list_resources", subscription_id, resource_group)
        return list(self.resources.get((subscription_id.casefold(), resource_group.casefold()), []))

    async def validate_deployment(
        self, subscription_id: str, resource_group: str, deployment_name: str, template: dict[str, Any]
    ) -> DeploymentValidation:
        self.record("validate_deployment", subscription_id, resource_group, deployment_name, template)
        if self.deployment_error:
            return DeploymentValidation(valid=False, error=self.deployment_error)
        return DeploymentValidation(valid=True)
