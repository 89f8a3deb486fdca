# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from dataclasses import replace

# project
from workflows.client.errors import AuthError, ProviderError
from workflows.common import (
    AZURE_AD_TOKEN_EXCHANGE_AUDIENCE,
    GITHUB_OIDC_ISSUER,
    ContextError,
    EnsureStatus,
    InvalidInputError,
    MissingInputError,
    build_federated_credential,
)
from workflows.setup_workflow import (
    APPLICATION_STEP,
    FEDERATED_CREDENTIAL_STEP,
    RESOURCE_GROUP_STEP,
    ROLE_ASSIGNMENT_STEP,
    SERVICE_PRINCIPAL_STEP,
    SetupParameters,
    SetupWorkflow,
)
from workflows.tests.common import (
    DISPLAY_NAME,
    LOCATION,
    OTHER_SUBSCRIPTION_ID,
    REPO,
    RESOURCE_GROUP,
    SUBSCRIPTION_ID,
    SUBSCRIPTION_NAME,
    TENANT_ID,
    AsyncTestCase,
    FakeIdentityProvider,
)

RG_SCOPE = f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{RESOURCE_GROUP}"

PARAMS = SetupParameters(
    subscription=SUBSCRIPTION_ID,
    display_name=DISPLAY_NAME,
    resource_group=RESOURCE_GROUP,
    repo=REPO,
    location=LOCATION,
)

ALL_CREATED = {
    RESOURCE_GROUP_STEP: EnsureStatus.CREATED,
    APPLICATION_STEP: EnsureStatus.CREATED,
    SERVICE_PRINCIPAL_STEP: EnsureStatus.CREATED,
    FEDERATED_CREDENTIAL_STEP: EnsureStatus.CREATED,
    ROLE_ASSIGNMENT_STEP: EnsureStatus.CREATED,
}


class TestSetupWorkflow(AsyncTestCase):
    def setUp(self) -> None:
        self.provider = FakeIdentityProvider()

    async def run_setup(self, params: SetupParameters = PARAMS):
        return await SetupWorkflow(self.provider, params).run()

    async def test_fresh_setup_creates_everything(self):
        result = await self.run_setup()

        self.assertEqual(result.steps, ALL_CREATED)
        self.assertEqual(len(self.provider.applications), 1)
        app = next(iter(self.provider.applications.values()))
        sp = self.provider.service_principals[app.app_id]
        self.assertEqual(
            result.summary,
            {
                "applicationId": app.app_id,
                "servicePrincipalId": sp.object_id,
                "tenantId": TENANT_ID,
                "subscriptionId": SUBSCRIPTION_ID,
                "resourceGroup": RESOURCE_GROUP,
                "location": LOCATION,
                "scope": RG_SCOPE,
                "subject": "repo:octo/app:ref:refs/heads/main",
                "issuer": GITHUB_OIDC_ISSUER,
                "audience": AZURE_AD_TOKEN_EXCHANGE_AUDIENCE,
            },
        )
        self.assertEqual(len(self.provider.role_assignments), 1)
        ra = self.provider.role_assignments[0]
        self.assertEqual((ra.principal_id, ra.role, ra.scope), (sp.object_id, "Contributor", RG_SCOPE))

    async def test_second_run_is_idempotent(self):
        first = await self.run_setup()
        state = self.provider.snapshot()
        self.provider.calls.clear()

        second = await self.run_setup()

        self.assertEqual(set(second.steps.values()), {EnsureStatus.EXISTS})
        self.assertEqual(self.provider.create_calls, [])
        self.assertEqual(self.provider.snapshot(), state)
        self.assertEqual(second.summary, first.summary)

    async def test_steps_run_in_order(self):
        await self.run_setup()

        self.assertEqual(
            self.provider.create_calls,
            [
                "create_resource_group",
                "create_application",
                "create_service_principal",
                "create_federated_credential",
                "create_role_assignment",
            ],
        )
        self.assertEqual(self.provider.calls[0][0], "get_account")

    async def test_existing_resource_group_without_location(self):
        self.provider.add_resource_group()

        result = await self.run_setup(replace(PARAMS, location=None))

        self.assertEqual(result.steps[RESOURCE_GROUP_STEP], EnsureStatus.EXISTS)
        self.assertEqual(result.summary["location"], LOCATION)

    async def test_missing_resource_group_without_location_creates_nothing(self):
        with self.assertRaises(MissingInputError) as ctx:
            await self.run_setup(replace(PARAMS, location=None))

        self.assertIn("--location", ctx.exception.remediation[0])
        self.assertEqual(self.provider.create_calls, [])

    async def test_subscription_mismatch_stops_before_any_query(self):
        with self.assertRaises(ContextError) as ctx:
            await self.run_setup(replace(PARAMS, subscription=OTHER_SUBSCRIPTION_ID))

        self.assertIn(f"az account set --subscription {OTHER_SUBSCRIPTION_ID}", ctx.exception.remediation[0])
        self.assertEqual([name for name, _ in self.provider.calls], ["get_account"])

    async def test_subscription_by_name(self):
        result = await self.run_setup(replace(PARAMS, subscription=SUBSCRIPTION_NAME.lower()))

        self.assertEqual(result.summary["subscriptionId"], SUBSCRIPTION_ID)

    async def test_existing_application_is_reused(self):
        app = self.provider.add_application()
        sp = self.provider.add_service_principal(app.app_id)

        result = await self.run_setup()

        self.assertEqual(result.steps[APPLICATION_STEP], EnsureStatus.EXISTS)
        self.assertEqual(result.steps[SERVICE_PRINCIPAL_STEP], EnsureStatus.EXISTS)
        self.assertEqual(result.summary["applicationId"], app.app_id)
        self.assertEqual(result.summary["servicePrincipalId"], sp.object_id)
        self.assertEqual(self.provider.called("create_application"), 0)

    async def test_duplicate_applications_uses_first(self):
        first = self.provider.add_application()
        self.provider.add_application()

        with self.assertLogs("workflows.workflow.SetupWorkflow", level="WARNING"):
            result = await self.run_setup()

        self.assertEqual(result.summary["applicationId"], first.app_id)

    async def test_credential_with_other_audience_gets_its_own_credential(self):
        app = self.provider.add_application()
        other = build_federated_credential(REPO, "branch", "main", audiences=("api://custom",))
        self.provider.federated_credentials[app.app_id] = [other]

        result = await self.run_setup()

        self.assertEqual(result.steps[FEDERATED_CREDENTIAL_STEP], EnsureStatus.CREATED)
        credentials = self.provider.federated_credentials[app.app_id]
        self.assertEqual(len(credentials), 2)
        self.assertEqual({c.subject for c in credentials}, {"repo:octo/app:ref:refs/heads/main"})
        self.assertEqual(len({c.name for c in credentials}), 2)

    async def test_stale_credentials_are_left_in_place(self):
        app = self.provider.add_application()
        stale = build_federated_credential(REPO, "branch", "old-branch")
        self.provider.federated_credentials[app.app_id] = [stale]

        with self.assertLogs("workflows.workflow.SetupWorkflow", level="INFO") as logs:
            await self.run_setup()

        self.assertIn(stale, self.provider.federated_credentials[app.app_id])
        self.assertTrue(any("Leaving 1 other GitHub federated credential" in line for line in logs.output))

    async def test_environment_subject(self):
        result = await self.run_setup(replace(PARAMS, subject_mode="environment", subject_value="prod"))

        self.assertEqual(result.summary["subject"], "repo:octo/app:environment:prod")

    async def test_subscription_scope_level(self):
        result = await self.run_setup(replace(PARAMS, scope_level="subscription", role="Reader"))

        self.assertEqual(result.summary["scope"], f"/subscriptions/{SUBSCRIPTION_ID}")
        ra = self.provider.role_assignments[0]
        self.assertEqual((ra.role, ra.scope), ("Reader", f"/subscriptions/{SUBSCRIPTION_ID}"))

    async def test_provider_error_aborts_and_keeps_earlier_resources(self):
        self.provider.fail_on["create_role_assignment"] = AuthError(
            "az role assignment create", "AuthorizationFailed", 1, "Insufficient permissions"
        )

        with self.assertRaises(ProviderError):
            await self.run_setup()

        self.assertEqual(len(self.provider.applications), 1)
        self.assertEqual(len(self.provider.service_principals), 1)
        self.assertEqual(self.provider.role_assignments, [])

    async def test_lookup_error_aborts_before_create(self):
        self.provider.fail_on["find_service_principal"] = ProviderError("graph unavailable")

        with self.assertRaises(ProviderError):
            await self.run_setup()

        self.assertEqual(self.provider.called("create_service_principal"), 0)
        self.assertEqual(self.provider.called("list_federated_credentials"), 0)


class TestSetupParameters(AsyncTestCase):
    def test_invalid_repo(self):
        with self.assertRaises(InvalidInputError):
            SetupWorkflow(FakeIdentityProvider(), replace(PARAMS, repo="not-a-repo"))

    def test_invalid_subject_mode(self):
        with self.assertRaises(InvalidInputError):
            SetupWorkflow(FakeIdentityProvider(), replace(PARAMS, subject_mode="pull_request"))

    def test_invalid_scope_level(self):
        with self.assertRaises(InvalidInputError):
            SetupWorkflow(FakeIdentityProvider(), replace(PARAMS, scope_level="management-group"))

    def test_empty_subject_value(self):
        with self.assertRaises(InvalidInputError):
            SetupWorkflow(FakeIdentityProvider(), replace(PARAMS, subject_value=""))
