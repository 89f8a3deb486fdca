# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from dataclasses import dataclass
from typing import NamedTuple, TypedDict

# project
from workflows.client.identity_client import (
    Application,
    FederatedCredential,
    IdentityProvider,
    ResourceGroupInfo,
    RoleAssignment,
    ServicePrincipal,
)
from workflows.common import (
    DEFAULT_ROLE,
    DEFAULT_SCOPE_LEVEL,
    DEFAULT_SUBJECT_MODE,
    DEFAULT_SUBJECT_VALUE,
    SCOPE_LEVELS,
    SUBJECT_MODES,
    EnsureStatus,
    InvalidInputError,
    MissingInputError,
    build_federated_credential,
    ensure,
    get_scope,
    is_valid_github_repo,
)
from workflows.workflow import Workflow

SETUP_WORKFLOW_NAME = "setup"

RESOURCE_GROUP_STEP = "resource_group"
APPLICATION_STEP = "application"
SERVICE_PRINCIPAL_STEP = "service_principal"
FEDERATED_CREDENTIAL_STEP = "federated_credential"
ROLE_ASSIGNMENT_STEP = "role_assignment"


@dataclass(frozen=True)
class SetupParameters:
    subscription: str
    display_name: str
    resource_group: str
    repo: str
    location: str | None = None
    subject_mode: str = DEFAULT_SUBJECT_MODE
    subject_value: str = DEFAULT_SUBJECT_VALUE
    role: str = DEFAULT_ROLE
    scope_level: str = DEFAULT_SCOPE_LEVEL


class SetupSummary(TypedDict):
    applicationId: str
    servicePrincipalId: str
    tenantId: str
    subscriptionId: str
    resourceGroup: str
    location: str
    scope: str
    subject: str
    issuer: str
    audience: str


class SetupResult(NamedTuple):
    summary: SetupSummary
    steps: dict[str, EnsureStatus]
    "Mapping of step name to whether the resource was found or created"


def validate_parameters(params: SetupParameters) -> None:
    if not is_valid_github_repo(params.repo):
        raise InvalidInputError(
            f"Invalid GitHub repository '{params.repo}'", ["Pass the repository as owner/repo, e.g. --repo octo/app"]
        )
    if params.subject_mode not in SUBJECT_MODES:
        raise InvalidInputError(
            f"Invalid subject mode '{params.subject_mode}'", [f"Use one of: {', '.join(SUBJECT_MODES)}"]
        )
    if params.scope_level not in SCOPE_LEVELS:
        raise InvalidInputError(
            f"Invalid scope level '{params.scope_level}'", [f"Use one of: {', '.join(SCOPE_LEVELS)}"]
        )
    if not params.subject_value:
        raise InvalidInputError("Subject value must not be empty", ["Pass --subject-value, e.g. main"])


class SetupWorkflow(Workflow[SetupResult]):
    """Ensure a GitHub Actions deployment identity exists, step by step.
    Every step looks the resource up by its natural key first, so re-running is always safe.
    The first error aborts the run, resources from earlier steps are left in place."""

    NAME = SETUP_WORKFLOW_NAME

    def __init__(self, provider: IdentityProvider, params: SetupParameters) -> None:
        super().__init__(provider)
        validate_parameters(params)
        self.params = params
        self.credential = build_federated_credential(params.repo, params.subject_mode, params.subject_value)
        self.steps: dict[str, EnsureStatus] = {}

    async def run(self) -> SetupResult:
        account = await self.check_context(self.params.subscription)
        subscription_id = account.subscription_id
        scope = get_scope(self.params.scope_level, subscription_id, self.params.resource_group)

        resource_group = await self.ensure_resource_group(subscription_id)
        application = await self.ensure_application()
        service_principal = await self.ensure_service_principal(application.app_id)
        await self.ensure_federated_credential(application.app_id)
        await self.ensure_role_assignment(service_principal.object_id, scope)

        self.log.info("Setup complete for application '%s' (%s)", application.display_name, application.app_id)
        summary: SetupSummary = {
            "applicationId": application.app_id,
            "servicePrincipalId": service_principal.object_id,
            "tenantId": account.tenant_id,
            "subscriptionId": subscription_id,
            "resourceGroup": resource_group.name,
            "location": resource_group.location,
            "scope": scope,
            "subject": self.credential.subject,
            "issuer": self.credential.issuer,
            "audience": ",".join(self.credential.audiences),
        }
        return SetupResult(summary, dict(self.steps))

    async def ensure_resource_group(self, subscription_id: str) -> ResourceGroupInfo:
        name = self.params.resource_group

        async def create() -> ResourceGroupInfo:
            location = self.params.location
            if not location:
                raise MissingInputError(
                    f"Resource group '{name}' does not exist and no location was given",
                    ["Pass --location (e.g. --location eastus) so the resource group can be created"],
                )
            return await self.provider.create_resource_group(subscription_id, name, location)

        outcome = await ensure(
            self.log,
            f"Resource group '{name}'",
            lambda: self.provider.get_resource_group(subscription_id, name),
            create,
        )
        self.steps[RESOURCE_GROUP_STEP] = outcome.status
        return outcome.resource

    async def find_application(self) -> Application | None:
        applications = await self.provider.find_applications(self.params.display_name)
        if len(applications) > 1:
            self.log.warning(
                "Found %s applications named '%s', using %s",
                len(applications),
                self.params.display_name,
                applications[0].app_id,
            )
        return applications[0] if applications else None

    async def ensure_application(self) -> Application:
        name = self.params.display_name
        outcome = await ensure(
            self.log,
            f"Application '{name}'",
            self.find_application,
            lambda: self.provider.create_application(name),
        )
        self.steps[APPLICATION_STEP] = outcome.status
        return outcome.resource

    async def ensure_service_principal(self, app_id: str) -> ServicePrincipal:
        outcome = await ensure(
            self.log,
            f"Service principal for {app_id}",
            lambda: self.provider.find_service_principal(app_id),
            lambda: self.provider.create_service_principal(app_id),
        )
        self.steps[SERVICE_PRINCIPAL_STEP] = outcome.status
        return outcome.resource

    async def find_federated_credential(self, app_id: str) -> FederatedCredential | None:
        credentials = await self.provider.list_federated_credentials(app_id)
        others = [c for c in credentials if c.issuer == self.credential.issuer and c.key != self.credential.key]
        if others:
            # credentials for previous subjects are never pruned here
            self.log.info(
                "Leaving %s other GitHub federated credential(s) in place: %s",
                len(others),
                ", ".join(f"{c.name} ({c.subject})" for c in others),
            )
        return next((c for c in credentials if c.key == self.credential.key), None)

    async def ensure_federated_credential(self, app_id: str) -> FederatedCredential:
        outcome = await ensure(
            self.log,
            f"Federated credential for '{self.credential.subject}'",
            lambda: self.find_federated_credential(app_id),
            lambda: self.provider.create_federated_credential(app_id, self.credential),
        )
        self.steps[FEDERATED_CREDENTIAL_STEP] = outcome.status
        return outcome.resource

    async def find_role_assignment(self, principal_id: str, scope: str) -> RoleAssignment | None:
        assignments = await self.provider.list_role_assignments(principal_id, scope)
        return next((ra for ra in assignments if ra.matches(principal_id, self.params.role, scope)), None)

    async def ensure_role_assignment(self, principal_id: str, scope: str) -> RoleAssignment:
        role = self.params.role
        outcome = await ensure(
            self.log,
            f"Role assignment '{role}' on {scope}",
            lambda: self.find_role_assignment(principal_id, scope),
            lambda: self.provider.create_role_assignment(principal_id, role, scope),
        )
        self.steps[ROLE_ASSIGNMENT_STEP] = outcome.status
        return outcome.resource
