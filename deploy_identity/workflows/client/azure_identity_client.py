# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from json import dumps
from logging import getLogger
from types import TracebackType
from typing import Any, Final, Self, cast

# 3p
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.identity.aio import AzureCliCredential
from azure.mgmt.resource.resources.aio import ResourceManagementClient
from azure.mgmt.resource.resources.models import Deployment, DeploymentMode, DeploymentProperties, ResourceGroup

# project
from workflows.client.az_cli import AzCli
from workflows.client.errors import ProviderError
from workflows.client.identity_client import (
    Account,
    Application,
    DeploymentValidation,
    FederatedCredential,
    IdentityProvider,
    ResourceGroupInfo,
    RoleAssignment,
    ServicePrincipal,
    normalize_scope,
)
from workflows.client.schemas import (
    ACCOUNT_SCHEMA,
    APPLICATION_LIST_SCHEMA,
    APPLICATION_SCHEMA,
    FEDERATED_CREDENTIAL_LIST_SCHEMA,
    FEDERATED_CREDENTIAL_SCHEMA,
    ROLE_ASSIGNMENT_LIST_SCHEMA,
    ROLE_ASSIGNMENT_SCHEMA,
    SERVICE_PRINCIPAL_LIST_SCHEMA,
    SERVICE_PRINCIPAL_SCHEMA,
)
from workflows.concurrency import collect

log = getLogger(__name__)

SERVICE_PRINCIPAL_TYPE: Final = "ServicePrincipal"
BAD_REQUEST: Final = 400


def to_application(app: dict[str, Any]) -> Application:
    return Application(app_id=app["appId"], object_id=app["id"], display_name=app["displayName"])


def to_service_principal(sp: dict[str, Any]) -> ServicePrincipal:
    return ServicePrincipal(object_id=sp["id"], app_id=sp["appId"], type=sp.get("servicePrincipalType"))


def to_federated_credential(fc: dict[str, Any]) -> FederatedCredential:
    return FederatedCredential(
        name=fc["name"],
        issuer=fc["issuer"],
        subject=fc["subject"],
        audiences=tuple(fc["audiences"]),
        description=fc.get("description") or "",
    )


def to_role_assignment(ra: dict[str, Any]) -> RoleAssignment:
    return RoleAssignment(
        principal_id=ra["principalId"], role=ra["roleDefinitionName"], scope=ra["scope"], id=ra.get("id", "")
    )


class AzureIdentityProvider(IdentityProvider):
    """Entra ID, RBAC and account operations go through the Azure CLI, ARM operations through the SDK.
    Both authenticate with the operator's `az login` session"""

    def __init__(self, az: AzCli | None = None) -> None:
        super().__init__()
        self.az = az or AzCli()
        self.credential = AzureCliCredential()
        self._resource_clients: dict[str, ResourceManagementClient] = {}

    async def __aenter__(self) -> Self:
        await self.credential.__aenter__()
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: TracebackType | None
    ) -> None:
        for client in self._resource_clients.values():
            await client.__aexit__(exc_type, exc_val, exc_tb)
        self._resource_clients.clear()
        await self.credential.__aexit__(exc_type, exc_val, exc_tb)

    async def resource_client(self, subscription_id: str) -> ResourceManagementClient:
        if subscription_id not in self._resource_clients:
            client = ResourceManagementClient(self.credential, subscription_id)
            await client.__aenter__()
            self._resource_clients[subscription_id] = client
        return self._resource_clients[subscription_id]

    # ===== Account ===== #
    async def get_account(self) -> Account:
        account = await self.az.json(ACCOUNT_SCHEMA, "account", "show")
        return Account(
            subscription_id=account["id"],
            subscription_name=account.get("name", ""),
            tenant_id=account["tenantId"],
            user_name=account.get("user", {}).get("name", ""),
        )

    # ===== Resource Groups (ARM) ===== #
    async def get_resource_group(self, subscription_id: str, name: str) -> ResourceGroupInfo | None:
        client = await self.resource_client(subscription_id)
        try:
            rg = await client.resource_groups.get(name)
        except ResourceNotFoundError:
            return None
        except HttpResponseError as e:
            raise ProviderError(f"Failed to look up resource group '{name}': {e.message}") from e
        return ResourceGroupInfo(
            name=cast(str, rg.name),
            location=cast(str, rg.location),
            provisioning_state=rg.properties.provisioning_state if rg.properties else None,
        )

    async def create_resource_group(self, subscription_id: str, name: str, location: str) -> ResourceGroupInfo:
        client = await self.resource_client(subscription_id)
        try:
            rg = await client.resource_groups.create_or_update(name, ResourceGroup(location=location))
        except HttpResponseError as e:
            raise ProviderError(f"Failed to create resource group '{name}' in {location}: {e.message}") from e
        return ResourceGroupInfo(
            name=cast(str, rg.name),
            location=cast(str, rg.location),
            provisioning_state=rg.properties.provisioning_state if rg.properties else None,
        )

    async def list_resources(self, subscription_id: str, resource_group: str) -> list[str]:
        client = await self.resource_client(subscription_id)
        try:
            resources = await collect(client.resources.list_by_resource_group(resource_group))
        except HttpResponseError as e:
            raise ProviderError(f"Failed to list resources in '{resource_group}': {e.message}") from e
        return [cast(str, r.id) for r in resources]

    async def validate_deployment(
        self, subscription_id: str, resource_group: str, deployment_name: str, template: dict[str, Any]
    ) -> DeploymentValidation:
        client = await self.resource_client(subscription_id)
        deployment = Deployment(properties=DeploymentProperties(mode=DeploymentMode.INCREMENTAL, template=template))
        try:
            poller = await client.deployments.begin_validate(resource_group, deployment_name, deployment)
            result = await poller.result()
        except HttpResponseError as e:
            # a template that fails validation comes back as a 400, anything else is a provider failure
            if e.status_code == BAD_REQUEST:
                return DeploymentValidation(valid=False, error=e.message)
            raise ProviderError(f"Failed to validate deployment in '{resource_group}': {e.message}") from e
        if result.error:
            return DeploymentValidation(valid=False, error=result.error.message)
        return DeploymentValidation(valid=True)

    # ===== Applications ===== #
    async def find_applications(self, display_name: str) -> list[Application]:
        # --display-name is a prefix filter, so keep exact matches only
        apps = await self.az.json(APPLICATION_LIST_SCHEMA, "ad", "app", "list", "--display-name", display_name)
        return [to_application(app) for app in apps if app["displayName"] == display_name]

    async def get_application(self, app_id: str) -> Application | None:
        apps = await self.az.json(APPLICATION_LIST_SCHEMA, "ad", "app", "list", "--app-id", app_id)
        return to_application(apps[0]) if apps else None

    async def create_application(self, display_name: str) -> Application:
        app = await self.az.json(APPLICATION_SCHEMA, "ad", "app", "create", "--display-name", display_name)
        return to_application(app)

    # ===== Service Principals ===== #
    async def find_service_principal(self, app_id: str) -> ServicePrincipal | None:
        sps = await self.az.json(SERVICE_PRINCIPAL_LIST_SCHEMA, "ad", "sp", "list", "--filter", f"appId eq '{app_id}'")
        return to_service_principal(sps[0]) if sps else None

    async def create_service_principal(self, app_id: str) -> ServicePrincipal:
        sp = await self.az.json(SERVICE_PRINCIPAL_SCHEMA, "ad", "sp", "create", "--id", app_id)
        return to_service_principal(sp)

    # ===== Federated Credentials ===== #
    async def list_federated_credentials(self, app_id: str) -> list[FederatedCredential]:
        creds = await self.az.json(
            FEDERATED_CREDENTIAL_LIST_SCHEMA, "ad", "app", "federated-credential", "list", "--id", app_id
        )
        return [to_federated_credential(fc) for fc in creds]

    async def create_federated_credential(self, app_id: str, credential: FederatedCredential) -> FederatedCredential:
        parameters = dumps(
            {
                "name": credential.name,
                "issuer": credential.issuer,
                "subject": credential.subject,
                "description": credential.description,
                "audiences": list(credential.audiences),
            }
        )
        fc = await self.az.json(
            FEDERATED_CREDENTIAL_SCHEMA,
            "ad",
            "app",
            "federated-credential",
            "create",
            "--id",
            app_id,
            "--parameters",
            parameters,
        )
        return to_federated_credential(fc)

    # ===== Role Assignments ===== #
    async def list_role_assignments(self, principal_id: str, scope: str) -> list[RoleAssignment]:
        assignments = await self.az.json(
            ROLE_ASSIGNMENT_LIST_SCHEMA, "role", "assignment", "list", "--assignee", principal_id, "--scope", scope
        )
        # az also returns assignments made below the scope
        return [
            to_role_assignment(ra) for ra in assignments if normalize_scope(ra["scope"]) == normalize_scope(scope)
        ]

    async def create_role_assignment(self, principal_id: str, role: str, scope: str) -> RoleAssignment:
        ra = await self.az.json(
            ROLE_ASSIGNMENT_SCHEMA,
            "role",
            "assignment",
            "create",
            "--assignee-object-id",
            principal_id,
            "--assignee-principal-type",
            SERVICE_PRINCIPAL_TYPE,
            "--role",
            role,
            "--scope",
            scope,
        )
        return to_role_assignment(ra)
