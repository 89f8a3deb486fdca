# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final, NamedTuple

# project
from workflows.client.errors import ProviderError
from workflows.client.identity_client import IdentityProvider, ServicePrincipal
from workflows.common import (
    AZURE_AD_TOKEN_EXCHANGE_AUDIENCE,
    DEFAULT_ROLE,
    DEFAULT_SCOPE_LEVEL,
    GITHUB_OIDC_ISSUER,
    SCOPE_LEVELS,
    InvalidInputError,
    generate_unique_id,
    get_scope,
)
from workflows.workflow import Workflow

VALIDATION_WORKFLOW_NAME = "validation"

RESOURCE_GROUP_CHECK: Final = "Resource group"
APPLICATION_CHECK: Final = "Application registration"
SERVICE_PRINCIPAL_CHECK: Final = "Service principal"
FEDERATED_CREDENTIALS_CHECK: Final = "Federated credentials"
ROLE_ASSIGNMENTS_CHECK: Final = "Role assignments"
RESOURCE_LISTING_PROBE: Final = "Resource listing"
DEPLOYMENT_PROBE: Final = "Deployment dry-run"

VALIDATION_DEPLOYMENT_PREFIX: Final = "deploy-identity-validation-"

EMPTY_DEPLOYMENT_TEMPLATE: Final[dict[str, Any]] = {
    "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#",
    "contentVersion": "1.0.0.0",
    "resources": [],
}


class CheckStatus(StrEnum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"


class CheckResult(NamedTuple):
    name: str
    status: CheckStatus
    detail: str
    remediation: tuple[str, ...] = ()


@dataclass
class ValidationReport:
    results: list[CheckResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def errors(self) -> int:
        return sum(r.status == CheckStatus.FAIL for r in self.results)

    @property
    def warnings(self) -> int:
        return sum(r.status == CheckStatus.WARN for r in self.results)

    @property
    def passed(self) -> bool:
        return self.errors == 0

    def remediation(self) -> list[tuple[str, tuple[str, ...]]]:
        """Remediation steps for every check that did not pass, in check order"""
        return [(r.name, r.remediation) for r in self.results if r.status != CheckStatus.PASS and r.remediation]


@dataclass(frozen=True)
class ValidationParameters:
    app_id: str
    subscription: str
    resource_group: str
    tenant_id: str | None = None
    scope_level: str = DEFAULT_SCOPE_LEVEL
    role: str | None = None
    subject: str | None = None


class ValidationWorkflow(Workflow[ValidationReport]):
    """Re-query everything setup creates and probe what the identity can actually do.
    A failing check is counted and the next check runs, only the pre-flight check stops the run"""

    NAME = VALIDATION_WORKFLOW_NAME

    def __init__(self, provider: IdentityProvider, params: ValidationParameters) -> None:
        super().__init__(provider)
        if params.scope_level not in SCOPE_LEVELS:
            raise InvalidInputError(
                f"Invalid scope level '{params.scope_level}'", [f"Use one of: {', '.join(SCOPE_LEVELS)}"]
            )
        self.params = params
        self.subscription_id = params.subscription
        self.service_principal: ServicePrincipal | None = None

    async def run(self) -> ValidationReport:
        account = await self.check_context(self.params.subscription, self.params.tenant_id)
        self.subscription_id = account.subscription_id

        checks: list[tuple[str, Callable[[], Awaitable[CheckResult]], CheckStatus]] = [
            (RESOURCE_GROUP_CHECK, self.check_resource_group, CheckStatus.FAIL),
            (APPLICATION_CHECK, self.check_application, CheckStatus.FAIL),
            (SERVICE_PRINCIPAL_CHECK, self.check_service_principal, CheckStatus.FAIL),
            (FEDERATED_CREDENTIALS_CHECK, self.check_federated_credentials, CheckStatus.FAIL),
            (ROLE_ASSIGNMENTS_CHECK, self.check_role_assignments, CheckStatus.FAIL),
            # listing is advisory, it runs under the operator's session rather than the identity's
            (RESOURCE_LISTING_PROBE, self.probe_resource_listing, CheckStatus.WARN),
            (DEPLOYMENT_PROBE, self.probe_deployment, CheckStatus.FAIL),
        ]

        report = ValidationReport()
        for name, check, failure_status in checks:
            report.results.append(await self.run_check(name, check, failure_status))

        self.log.info(
            "Validation finished: %s error(s), %s warning(s) across %s checks",
            report.errors,
            report.warnings,
            report.total,
        )
        return report

    async def run_check(
        self, name: str, check: Callable[[], Awaitable[CheckResult]], failure_status: CheckStatus
    ) -> CheckResult:
        try:
            result = await check()
        except ProviderError as e:
            self.log.debug("%s check raised", name, exc_info=e)
            result = CheckResult(name, failure_status, str(e), ("Fix the error above and re-run validation",))
        self.log.info("[%s] %s: %s", result.status, name, result.detail)
        return result

    async def check_resource_group(self) -> CheckResult:
        name = self.params.resource_group
        rg = await self.provider.get_resource_group(self.subscription_id, name)
        if rg is None:
            return CheckResult(
                RESOURCE_GROUP_CHECK,
                CheckStatus.FAIL,
                f"Resource group '{name}' not found in subscription {self.subscription_id}",
                (
                    f"Create it: az group create --name {name} --location <location>",
                    "Or re-run setup-deploy-identity with --location",
                ),
            )
        state = rg.provisioning_state or "unknown"
        return CheckResult(RESOURCE_GROUP_CHECK, CheckStatus.PASS, f"'{rg.name}' in {rg.location} ({state})")

    async def check_application(self) -> CheckResult:
        app = await self.provider.get_application(self.params.app_id)
        if app is None:
            return CheckResult(
                APPLICATION_CHECK,
                CheckStatus.FAIL,
                f"No application registration with app id {self.params.app_id}",
                ("Check the app id, or create the application with setup-deploy-identity",),
            )
        return CheckResult(APPLICATION_CHECK, CheckStatus.PASS, f"'{app.display_name}' ({app.app_id})")

    async def check_service_principal(self) -> CheckResult:
        self.service_principal = await self.provider.find_service_principal(self.params.app_id)
        if self.service_principal is None:
            return CheckResult(
                SERVICE_PRINCIPAL_CHECK,
                CheckStatus.FAIL,
                f"No service principal for app id {self.params.app_id}",
                (f"Create it: az ad sp create --id {self.params.app_id}",),
            )
        return CheckResult(SERVICE_PRINCIPAL_CHECK, CheckStatus.PASS, f"Object id {self.service_principal.object_id}")

    async def check_federated_credentials(self) -> CheckResult:
        credentials = await self.provider.list_federated_credentials(self.params.app_id)
        github_credentials = [
            c for c in credentials if c.issuer == GITHUB_OIDC_ISSUER and AZURE_AD_TOKEN_EXCHANGE_AUDIENCE in c.audiences
        ]
        for credential in github_credentials:
            self.log.info("  - %s: %s", credential.name, credential.subject)

        if self.params.subject:
            if any(c.subject == self.params.subject for c in github_credentials):
                return CheckResult(
                    FEDERATED_CREDENTIALS_CHECK, CheckStatus.PASS, f"Found credential for '{self.params.subject}'"
                )
            return CheckResult(
                FEDERATED_CREDENTIALS_CHECK,
                CheckStatus.FAIL,
                f"No GitHub federated credential with subject '{self.params.subject}'",
                ("Re-run setup-deploy-identity with the matching --subject-mode and --subject-value",),
            )

        if not github_credentials:
            return CheckResult(
                FEDERATED_CREDENTIALS_CHECK,
                CheckStatus.FAIL,
                f"No GitHub federated credentials ({GITHUB_OIDC_ISSUER}) on the application",
                ("Run setup-deploy-identity to add a federated credential for your repository",),
            )
        return CheckResult(
            FEDERATED_CREDENTIALS_CHECK, CheckStatus.PASS, f"{len(github_credentials)} GitHub federated credential(s)"
        )

    async def check_role_assignments(self) -> CheckResult:
        scope = get_scope(self.params.scope_level, self.subscription_id, self.params.resource_group)
        if self.service_principal is None:
            return CheckResult(
                ROLE_ASSIGNMENTS_CHECK,
                CheckStatus.FAIL,
                "Service principal not found, cannot look up its role assignments",
                (f"Create the service principal first: az ad sp create --id {self.params.app_id}",),
            )

        principal_id = self.service_principal.object_id
        assignments = await self.provider.list_role_assignments(principal_id, scope)
        role = self.params.role
        if role:
            assignments = [ra for ra in assignments if ra.matches(principal_id, role, scope)]
        if not assignments:
            wanted = role or DEFAULT_ROLE
            return CheckResult(
                ROLE_ASSIGNMENTS_CHECK,
                CheckStatus.FAIL,
                f"No {f'{role} ' if role else ''}role assignment on {scope}",
                (
                    f"az role assignment create --assignee-object-id {principal_id} "
                    f"--assignee-principal-type ServicePrincipal --role {wanted} --scope {scope}",
                ),
            )
        roles = ", ".join(sorted({ra.role for ra in assignments}))
        return CheckResult(ROLE_ASSIGNMENTS_CHECK, CheckStatus.PASS, f"{roles} on {scope}")

    async def probe_resource_listing(self) -> CheckResult:
        resources = await self.provider.list_resources(self.subscription_id, self.params.resource_group)
        return CheckResult(RESOURCE_LISTING_PROBE, CheckStatus.PASS, f"Listed {len(resources)} resource(s)")

    async def probe_deployment(self) -> CheckResult:
        validation = await self.provider.validate_deployment(
            self.subscription_id,
            self.params.resource_group,
            VALIDATION_DEPLOYMENT_PREFIX + generate_unique_id(),
            EMPTY_DEPLOYMENT_TEMPLATE,
        )
        if not validation.valid:
            return CheckResult(
                DEPLOYMENT_PROBE,
                CheckStatus.FAIL,
                f"Deployment validation failed: {validation.error}",
                (
                    "Grant a role that allows Microsoft.Resources/deployments/validate/action "
                    f"(e.g. {DEFAULT_ROLE}) on resource group '{self.params.resource_group}'",
                ),
            )
        return CheckResult(DEPLOYMENT_PROBE, CheckStatus.PASS, "Empty template validated")
