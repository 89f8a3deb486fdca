# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.


class ProviderError(Exception):
    """Any failure talking to the cloud provider. Fatal during setup, a failed check during validation"""


class AzCliNotFoundError(ProviderError):
    def __init__(self) -> None:
        super().__init__("Azure CLI ('az') was not found on PATH, install it from https://aka.ms/installazurecli")


class AzCliError(ProviderError):
    def __init__(self, cmd: str, stderr: str, returncode: int, message: str | None = None) -> None:
        super().__init__(message or f"Command '{cmd}' failed with exit code {returncode}: {stderr.strip()}")
        self.cmd = cmd
        self.stderr = stderr
        self.returncode = returncode


class NotAuthenticatedError(AzCliError):
    pass


class RefreshTokenError(AzCliError):
    pass


class AuthError(AzCliError):
    pass


class InvalidResponseError(ProviderError):
    pass
