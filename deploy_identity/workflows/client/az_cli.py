# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from asyncio import create_subprocess_exec
from asyncio.subprocess import PIPE
from logging import getLogger
from re import search
from shlex import join
from typing import Any, Final

# project
from workflows.client.errors import (
    AuthError,
    AzCliError,
    AzCliNotFoundError,
    InvalidResponseError,
    NotAuthenticatedError,
    RefreshTokenError,
)
from workflows.client.schemas import Schema, parse_response

log = getLogger(__name__)

AZ_EXECUTABLE: Final = "az"

# ===== Errors ===== #
REFRESH_TOKEN_EXPIRED_ERROR: Final = "AADSTS700082"
AUTHORIZATION_ERROR: Final = "AuthorizationFailed"
GRAPH_AUTHORIZATION_ERROR: Final = "Authorization_RequestDenied"
NOT_LOGGED_IN_ERRORS: Final = ("az login", "AADSTS70043", "AADSTS50173")


def access_error_message(stderr: str) -> str | None:
    # Sample:
    # (AuthorizationFailed) The client 'user@example.com' with object id '00000000-0000-0000-0000-000000000000'
    # does not have authorization to perform action 'Microsoft.Authorization/roleAssignments/write'
    # over scope '/subscriptions/00000000-0000-0000-0000-000000000000' or the scope is invalid.

    client_match = search(r"client '([^']*)'", stderr)
    action_match = search(r"action '([^']*)'", stderr)
    scope_match = search(r"scope '([^']*)'", stderr)

    if action_match and scope_match and client_match:
        return (
            f"Insufficient permissions for {client_match.group(1)} to perform "
            f"{action_match.group(1)} on {scope_match.group(1)}"
        )
    return None


def classify_error(cmd: str, stderr: str, returncode: int) -> AzCliError:
    """Map a failed az invocation to the most specific error type"""
    if REFRESH_TOKEN_EXPIRED_ERROR in stderr:
        message = f"Auth token is expired. Refresh token before running '{cmd}'"
        return RefreshTokenError(cmd, stderr, returncode, message)
    if any(marker in stderr for marker in NOT_LOGGED_IN_ERRORS):
        return NotAuthenticatedError(cmd, stderr, returncode, "Azure CLI is not logged in. Run 'az login'")
    if AUTHORIZATION_ERROR in stderr or GRAPH_AUTHORIZATION_ERROR in stderr:
        message = access_error_message(stderr) or f"Insufficient permissions when executing '{cmd}'"
        return AuthError(cmd, stderr, returncode, message)
    return AzCliError(cmd, stderr, returncode)


class AzCli:
    """Runs Azure CLI commands one at a time and returns their output"""

    def __init__(self, executable: str = AZ_EXECUTABLE) -> None:
        self.executable = executable

    async def run(self, *args: str) -> str:
        """Runs an az command, returns stdout. Raises a ProviderError subclass on failure, there are no retries"""
        cmd = join([self.executable, *args])
        log.debug("Running '%s'", cmd)
        try:
            process = await create_subprocess_exec(self.executable, *args, stdout=PIPE, stderr=PIPE)
        except FileNotFoundError:
            raise AzCliNotFoundError() from None
        stdout, stderr = await process.communicate()
        if process.returncode:
            raise classify_error(cmd, stderr.decode(errors="replace"), process.returncode)
        try:
            return stdout.decode()
        except UnicodeDecodeError as e:
            raise InvalidResponseError(f"Provider returned output that is not UTF-8: {e}") from e

    async def json(self, schema: Schema, *args: str) -> Any:
        """Runs an az command with JSON output and validates the result against `schema`"""
        return parse_response(await self.run(*args, "--output", "json", "--only-show-errors"), schema)
