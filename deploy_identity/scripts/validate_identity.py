#!/usr/bin/env python
# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# usage: validate_identity.py [-h] -a APP_ID -s SUBSCRIPTION -g RESOURCE_GROUP [-t TENANT_ID]
#                             [--scope-level {resource-group,subscription}] [--role ROLE] [--subject SUBJECT] [-v]
#
# Check that a deployment identity is fully configured and that deployments to the resource group
# would be accepted. Exits 1 if any check fails.

# stdlib
import argparse
from asyncio import run
from logging import getLogger
from typing import Final

# project
from config.env import (
    CLIENT_ID_SETTING,
    RESOURCE_GROUP_SETTING,
    SUBSCRIPTION_ID_SETTING,
    TENANT_ID_SETTING,
    MissingConfigOptionError,
    get_log_level,
    resolve_option,
)
from workflows.client.azure_identity_client import AzureIdentityProvider
from workflows.client.errors import ProviderError
from workflows.common import DEFAULT_SCOPE_LEVEL, SCOPE_LEVELS, WorkflowError
from workflows.validation_workflow import ValidationParameters, ValidationReport, ValidationWorkflow
from workflows.workflow import configure_logging

log = getLogger("validate_identity")

SEPARATOR: Final = "\n==============================\n"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate an Azure deployment identity used by GitHub Actions")
    parser.add_argument("-a", "--app-id", help=f"Application (client) ID. Defaults to ${CLIENT_ID_SETTING}")
    parser.add_argument(
        "-s", "--subscription", help=f"Subscription ID the session must be on. Defaults to ${SUBSCRIPTION_ID_SETTING}"
    )
    parser.add_argument(
        "-g", "--resource-group", help=f"Resource group deployments target. Defaults to ${RESOURCE_GROUP_SETTING}"
    )
    parser.add_argument(
        "-t", "--tenant-id", help=f"Expected tenant ID. Defaults to ${TENANT_ID_SETTING}, else the session's tenant"
    )
    parser.add_argument(
        "--scope-level",
        choices=SCOPE_LEVELS,
        default=DEFAULT_SCOPE_LEVEL,
        help="Where to look for the role assignment (default: %(default)s)",
    )
    parser.add_argument("--role", help="Require this role. Any role assignment passes if omitted")
    parser.add_argument("--subject", help="Require a federated credential with exactly this subject")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every Azure CLI call")
    args = parser.parse_args(argv)

    try:
        args.app_id = resolve_option(args.app_id, CLIENT_ID_SETTING)
        args.subscription = resolve_option(args.subscription, SUBSCRIPTION_ID_SETTING)
        args.resource_group = resolve_option(args.resource_group, RESOURCE_GROUP_SETTING)
        args.tenant_id = resolve_option(args.tenant_id, TENANT_ID_SETTING, required=False)
    except MissingConfigOptionError as e:
        parser.error(str(e))

    return args


async def validate(params: ValidationParameters) -> ValidationReport:
    async with AzureIdentityProvider() as provider:
        return await ValidationWorkflow(provider, params).run()


def print_report(report: ValidationReport) -> None:
    print(
        f"{SEPARATOR}Validation summary: {report.errors}/{report.total} check(s) failed, {report.warnings} warning(s)"
    )
    for result in report.results:
        print(f"\t[{result.status}] {result.name}")

    steps = report.remediation()
    if not steps:
        return
    print(f"{SEPARATOR}To fix:")
    for name, remediation in steps:
        print(f"  {name}:")
        for step in remediation:
            print(f"\t- {step}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(get_log_level(args.verbose))

    params = ValidationParameters(
        app_id=args.app_id,
        subscription=args.subscription,
        resource_group=args.resource_group,
        tenant_id=args.tenant_id,
        scope_level=args.scope_level,
        role=args.role,
        subject=args.subject,
    )
    try:
        report = run(validate(params))
    except (WorkflowError, ProviderError) as e:
        log.error("%sValidation could not start: %s", SEPARATOR, e)
        if isinstance(e, WorkflowError):
            for step in e.remediation:
                log.error("\t- %s", step)
        raise SystemExit(1) from e

    print_report(report)
    if not report.passed:
        raise SystemExit(1)
    log.info("All checks passed")


if __name__ == "__main__":  # pragma: no cover
    main()
