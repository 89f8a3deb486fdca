# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from hashlib import sha256
from logging import Logger
from re import fullmatch, sub
from typing import Final, Generic, Literal, TypeVar, get_args
from uuid import uuid4

# project
from workflows.client.identity_client import FederatedCredential

GITHUB_OIDC_ISSUER: Final = "https://token.actions.githubusercontent.com"
AZURE_AD_TOKEN_EXCHANGE_AUDIENCE: Final = "api://AzureADTokenExchange"

DEFAULT_SUBJECT_MODE: Final = "branch"
DEFAULT_SUBJECT_VALUE: Final = "main"
DEFAULT_ROLE: Final = "Contributor"
DEFAULT_SCOPE_LEVEL: Final = "resource-group"

SubjectMode = Literal["branch", "environment", "tags"]
ScopeLevel = Literal["resource-group", "subscription"]

SUBJECT_MODES: Final = get_args(SubjectMode)
SCOPE_LEVELS: Final = get_args(ScopeLevel)

SUBJECT_TEMPLATES: Final[dict[str, str]] = {
    "branch": "repo:{repo}:ref:refs/heads/{value}",
    "environment": "repo:{repo}:environment:{value}",
    "tags": "repo:{repo}:ref:refs/tags/{value}",
}

GITHUB_REPO_PATTERN: Final = r"[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+"

FEDERATED_CREDENTIAL_NAME_PREFIX: Final = "github-"
FEDERATED_CREDENTIAL_NAME_MAX_LENGTH: Final = 120


# ===== Errors ===== #
class WorkflowError(Exception):
    """A workflow cannot continue. `remediation` holds the steps the operator should take"""

    def __init__(self, message: str, remediation: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.remediation = list(remediation)


class ContextError(WorkflowError):
    pass


class MissingInputError(WorkflowError):
    pass


class InvalidInputError(WorkflowError):
    pass


# ===== Naming ===== #
def is_valid_github_repo(repo: str) -> bool:
    return fullmatch(GITHUB_REPO_PATTERN, repo) is not None


def build_subject(repo: str, mode: str, value: str) -> str:
    """Build the subject claim GitHub presents for a workflow run

    Example:
    >>> build_subject("octo/app", "branch", "main")
    "repo:octo/app:ref:refs/heads/main"
    """
    if mode not in SUBJECT_TEMPLATES:
        raise ValueError(f"Unknown subject mode '{mode}', expected one of: {', '.join(SUBJECT_MODES)}")
    return SUBJECT_TEMPLATES[mode].format(repo=repo, value=value)


def get_subscription_scope(subscription_id: str) -> str:
    return f"/subscriptions/{subscription_id}"


def get_resource_group_scope(subscription_id: str, resource_group: str) -> str:
    return f"{get_subscription_scope(subscription_id)}/resourceGroups/{resource_group}"


def get_scope(scope_level: str, subscription_id: str, resource_group: str) -> str:
    if scope_level == "subscription":
        return get_subscription_scope(subscription_id)
    return get_resource_group_scope(subscription_id, resource_group)


def get_federated_credential_name(mode: str, value: str, issuer: str, subject: str, audiences: Iterable[str]) -> str:
    """Deterministic credential name, distinct for every (issuer, subject, audience set)"""
    digest = sha256("\n".join([issuer, subject, *sorted(set(audiences))]).encode()).hexdigest()[:8]
    slug = sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    room = FEDERATED_CREDENTIAL_NAME_MAX_LENGTH - len(f"{FEDERATED_CREDENTIAL_NAME_PREFIX}{mode}--{digest}")
    return f"{FEDERATED_CREDENTIAL_NAME_PREFIX}{mode}-{slug[:room]}-{digest}"


def build_federated_credential(
    repo: str,
    mode: str,
    value: str,
    issuer: str = GITHUB_OIDC_ISSUER,
    audiences: tuple[str, ...] = (AZURE_AD_TOKEN_EXCHANGE_AUDIENCE,),
) -> FederatedCredential:
    subject = build_subject(repo, mode, value)
    return FederatedCredential(
        name=get_federated_credential_name(mode, value, issuer, subject, audiences),
        issuer=issuer,
        subject=subject,
        audiences=audiences,
        description=f"GitHub Actions deployments for {subject}",
    )


def generate_unique_id() -> str:
    """Generate a unique ID which is 12 characters long using hex characters

    Example:
    >>> generate_unique_id()
    "c5653797a664"
    """
    return str(uuid4())[-12:]


# ===== Ensure ===== #
T = TypeVar("T")


class EnsureStatus(StrEnum):
    EXISTS = "already exists"
    CREATED = "created"


@dataclass(frozen=True)
class EnsureOutcome(Generic[T]):
    status: EnsureStatus
    resource: T


async def ensure(
    log: Logger,
    description: str,
    find: Callable[[], Awaitable[T | None]],
    create: Callable[[], Awaitable[T]],
) -> EnsureOutcome[T]:
    """Look the resource up by its natural key and create it only if nothing matched.
    Errors from either call propagate, the caller decides whether they are fatal"""
    existing = await find()
    if existing is not None:
        log.info("%s %s", description, EnsureStatus.EXISTS)
        return EnsureOutcome(EnsureStatus.EXISTS, existing)

    log.info("%s not found, creating it", description)
    created = await create()
    log.info("%s %s", description, EnsureStatus.CREATED)
    return EnsureOutcome(EnsureStatus.CREATED, created)
