# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from abc import abstractmethod
from contextlib import AbstractAsyncContextManager
from types import TracebackType
from typing import Any, NamedTuple, Self


def normalize_scope(scope: str) -> str:
    return scope.rstrip("/").casefold()


class Account(NamedTuple):
    subscription_id: str
    subscription_name: str
    tenant_id: str
    user_name: str


class ResourceGroupInfo(NamedTuple):
    name: str
    location: str
    provisioning_state: str | None = None


class Application(NamedTuple):
    app_id: str
    object_id: str
    display_name: str


class ServicePrincipal(NamedTuple):
    object_id: str
    app_id: str
    type: str | None = None


class FederatedCredential(NamedTuple):
    name: str
    issuer: str
    subject: str
    audiences: tuple[str, ...]
    description: str = ""

    @property
    def key(self) -> tuple[str, str, frozenset[str]]:
        """Natural key: two credentials are the same only if issuer, subject and audience set all match"""
        return self.issuer, self.subject, frozenset(self.audiences)


class RoleAssignment(NamedTuple):
    principal_id: str
    role: str
    scope: str
    id: str = ""

    def matches(self, principal_id: str, role: str, scope: str) -> bool:
        return (
            self.principal_id.casefold() == principal_id.casefold()
            and self.role.casefold() == role.casefold()
            and normalize_scope(self.scope) == normalize_scope(scope)
        )


class DeploymentValidation(NamedTuple):
    valid: bool
    error: str | None = None


class IdentityProvider(AbstractAsyncContextManager["IdentityProvider"]):
    """The set of provider capabilities the workflows are built on: one method per query or create.
    Queries return None or an empty list when nothing matches; any failure raises a ProviderError"""

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: TracebackType | None
    ) -> None:
        return None

    @abstractmethod
    async def get_account(self) -> Account: ...

    @abstractmethod
    async def get_resource_group(self, subscription_id: str, name: str) -> ResourceGroupInfo | None: ...

    @abstractmethod
    async def create_resource_group(self, subscription_id: str, name: str, location: str) -> ResourceGroupInfo: ...

    @abstractmethod
    async def find_applications(self, display_name: str) -> list[Application]:
        """Applications whose display name is exactly `display_name`"""

    @abstractmethod
    async def get_application(self, app_id: str) -> Application | None: ...

    @abstractmethod
    async def create_application(self, display_name: str) -> Application: ...

    @abstractmethod
    async def find_service_principal(self, app_id: str) -> ServicePrincipal | None: ...

    @abstractmethod
    async def create_service_principal(self, app_id: str) -> ServicePrincipal: ...

    @abstractmethod
    async def list_federated_credentials(self, app_id: str) -> list[FederatedCredential]: ...

    @abstractmethod
    async def create_federated_credential(
        self, app_id: str, credential: FederatedCredential
    ) -> FederatedCredential: ...

    @abstractmethod
    async def list_role_assignments(self, principal_id: str, scope: str) -> list[RoleAssignment]:
        """Role assignments for the principal made exactly at `scope`"""

    @abstractmethod
    async def create_role_assignment(self, principal_id: str, role: str, scope: str) -> RoleAssignment: ...

    @abstractmethod
    async def list_resources(self, subscription_id: str, resource_group: str) -> list[str]:
        """Resource ids in the resource group"""

    @abstractmethod
    async def validate_deployment(
        self, subscription_id: str, resource_group: str, deployment_name: str, template: dict[str, Any]
    ) -> DeploymentValidation:
        """Validation-only evaluation of a deployment, nothing is deployed"""
