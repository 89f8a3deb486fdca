# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from abc import ABC, abstractmethod
from logging import WARNING, basicConfig, getLogger
from sys import stdout
from typing import Generic, TypeVar

# project
from workflows.client.errors import AzCliNotFoundError, NotAuthenticatedError, RefreshTokenError
from workflows.client.identity_client import Account, IdentityProvider
from workflows.common import ContextError

log = getLogger(__name__)

# silence azure sdk logging except for warnings
getLogger("azure").setLevel(WARNING)

LOG_FORMAT = "%(message)s"

R = TypeVar("R")


def configure_logging(level: str) -> None:
    """Progress is written to stdout as plain lines"""
    basicConfig(stream=stdout, format=LOG_FORMAT)
    getLogger().setLevel(level)


def subscription_matches(account: Account, requested: str) -> bool:
    """The requested subscription may be given by id or by name"""
    requested = requested.strip().casefold()
    return requested in {account.subscription_id.casefold(), account.subscription_name.casefold()}


class Workflow(ABC, Generic[R]):
    NAME: str

    def __init__(self, provider: IdentityProvider) -> None:
        self.provider = provider
        self.log = log.getChild(self.__class__.__name__)

    @abstractmethod
    async def run(self) -> R: ...

    async def check_context(self, subscription: str, tenant_id: str | None = None) -> Account:
        """Confirm the session is authenticated and pointed at the requested subscription (and tenant).
        Nothing else may be queried until this passes"""
        self.log.info("Starting %s workflow, checking Azure CLI session...", self.NAME)
        try:
            account = await self.provider.get_account()
        except AzCliNotFoundError as e:
            raise ContextError(
                str(e), ["Install the Azure CLI: https://aka.ms/installazurecli", "Run 'az login'"]
            ) from e
        except (NotAuthenticatedError, RefreshTokenError) as e:
            raise ContextError(
                f"Not authenticated with Azure: {e}",
                ["Run 'az login'", f"Then select the subscription: az account set --subscription {subscription}"],
            ) from e

        if not subscription_matches(account, subscription):
            raise ContextError(
                f"Active subscription is '{account.subscription_name}' ({account.subscription_id}), "
                f"but '{subscription}' was requested",
                [f"Run 'az account set --subscription {subscription}' and try again"],
            )

        if tenant_id and tenant_id.casefold() != account.tenant_id.casefold():
            raise ContextError(
                f"Active tenant is '{account.tenant_id}', but '{tenant_id}' was requested",
                [f"Run 'az login --tenant {tenant_id}' and try again"],
            )

        self.log.info(
            "Authenticated as %s on subscription '%s' (%s), tenant %s",
            account.user_name or "unknown user",
            account.subscription_name,
            account.subscription_id,
            account.tenant_id,
        )
        return account
