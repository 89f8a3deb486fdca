#!/usr/bin/env python
# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# usage: setup_identity.py [-h] -s SUBSCRIPTION -n DISPLAY_NAME -g RESOURCE_GROUP -r REPO [-l LOCATION]
#                          [--subject-mode {branch,environment,tags}] [--subject-value SUBJECT_VALUE]
#                          [--role ROLE] [--scope-level {resource-group,subscription}]
#                          [--summary-file SUMMARY_FILE] [-v]
#
# Create (or confirm) a service principal that GitHub Actions can log in as through OIDC,
# with a role assignment on the target resource group. Safe to run repeatedly.

# stdlib
import argparse
from asyncio import run
from json import dumps
from logging import getLogger
from pathlib import Path
from typing import Final

# project
from config.env import (
    GITHUB_REPOSITORY_SETTING,
    LOCATION_SETTING,
    RESOURCE_GROUP_SETTING,
    SUBSCRIPTION_ID_SETTING,
    MissingConfigOptionError,
    get_log_level,
    resolve_option,
)
from workflows.client.azure_identity_client import AzureIdentityProvider
from workflows.client.errors import ProviderError
from workflows.common import (
    DEFAULT_ROLE,
    DEFAULT_SCOPE_LEVEL,
    DEFAULT_SUBJECT_MODE,
    DEFAULT_SUBJECT_VALUE,
    SCOPE_LEVELS,
    SUBJECT_MODES,
    WorkflowError,
)
from workflows.setup_workflow import SetupParameters, SetupResult, SetupWorkflow
from workflows.workflow import configure_logging

log = getLogger("setup_identity")

SEPARATOR: Final = "\n==============================\n"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create or confirm an Azure deployment identity for GitHub Actions (OIDC federation)"
    )
    parser.add_argument(
        "-s", "--subscription", help=f"Subscription ID the session must be on. Defaults to ${SUBSCRIPTION_ID_SETTING}"
    )
    parser.add_argument("-n", "--display-name", required=True, help="Display name of the application registration")
    parser.add_argument(
        "-g", "--resource-group", help=f"Resource group to grant access to. Defaults to ${RESOURCE_GROUP_SETTING}"
    )
    parser.add_argument(
        "-r", "--repo", help=f"GitHub repository as owner/repo. Defaults to ${GITHUB_REPOSITORY_SETTING}"
    )
    parser.add_argument(
        "-l",
        "--location",
        help=f"Location for the resource group, only needed if it does not exist yet. Defaults to ${LOCATION_SETTING}",
    )
    parser.add_argument(
        "--subject-mode",
        choices=SUBJECT_MODES,
        default=DEFAULT_SUBJECT_MODE,
        help="What the GitHub workflow runs from: a branch, an environment, or a tag",
    )
    parser.add_argument(
        "--subject-value",
        default=DEFAULT_SUBJECT_VALUE,
        help="Branch, environment, or tag name (default: %(default)s)",
    )
    parser.add_argument("--role", default=DEFAULT_ROLE, help="Role to assign (default: %(default)s)")
    parser.add_argument(
        "--scope-level",
        choices=SCOPE_LEVELS,
        default=DEFAULT_SCOPE_LEVEL,
        help="Assign the role on the resource group or on the whole subscription (default: %(default)s)",
    )
    parser.add_argument("--summary-file", type=Path, help="Also write the JSON summary to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every Azure CLI call")
    args = parser.parse_args(argv)

    try:
        args.subscription = resolve_option(args.subscription, SUBSCRIPTION_ID_SETTING)
        args.resource_group = resolve_option(args.resource_group, RESOURCE_GROUP_SETTING)
        args.repo = resolve_option(args.repo, GITHUB_REPOSITORY_SETTING)
        args.location = resolve_option(args.location, LOCATION_SETTING, required=False)
    except MissingConfigOptionError as e:
        parser.error(str(e))

    return args


async def setup(params: SetupParameters) -> SetupResult:
    async with AzureIdentityProvider() as provider:
        return await SetupWorkflow(provider, params).run()


def report_failure(error: WorkflowError | ProviderError) -> None:
    log.error("%sSetup failed: %s", SEPARATOR, error)
    if isinstance(error, WorkflowError) and error.remediation:
        log.error("To fix this:")
        for step in error.remediation:
            log.error("\t- %s", step)
    log.error("Anything created before the failure is left in place. Re-run once the problem is fixed.")


def print_summary(result: SetupResult, summary_file: Path | None) -> None:
    summary = result.summary
    summary_json = dumps(summary, indent=2)
    print(f"{SEPARATOR}Summary:")
    print(summary_json)
    if summary_file:
        summary_file.write_text(summary_json + "\n")
        log.info("Summary written to %s", summary_file)

    print(f"{SEPARATOR}Add these secrets to the GitHub repository (Settings > Secrets and variables > Actions):")
    print(f"\tAZURE_CLIENT_ID={summary['applicationId']}")
    print(f"\tAZURE_TENANT_ID={summary['tenantId']}")
    print(f"\tAZURE_SUBSCRIPTION_ID={summary['subscriptionId']}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(get_log_level(args.verbose))

    params = SetupParameters(
        subscription=args.subscription,
        display_name=args.display_name,
        resource_group=args.resource_group,
        repo=args.repo,
        location=args.location,
        subject_mode=args.subject_mode,
        subject_value=args.subject_value,
        role=args.role,
        scope_level=args.scope_level,
    )
    try:
        result = run(setup(params))
    except (WorkflowError, ProviderError) as e:
        report_failure(e)
        raise SystemExit(1) from e

    print_summary(result, args.summary_file)


if __name__ == "__main__":  # pragma: no cover
    main()
