# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from collections.abc import Callable
from logging import getLogger
from os import environ
from typing import TypeVar

T = TypeVar("T")

log = getLogger(__name__)


# Settings
SUBSCRIPTION_ID_SETTING = "AZURE_SUBSCRIPTION_ID"
TENANT_ID_SETTING = "AZURE_TENANT_ID"
CLIENT_ID_SETTING = "AZURE_CLIENT_ID"
RESOURCE_GROUP_SETTING = "AZURE_RESOURCE_GROUP"
LOCATION_SETTING = "AZURE_LOCATION"
GITHUB_REPOSITORY_SETTING = "GITHUB_REPOSITORY"
LOG_LEVEL_SETTING = "LOG_LEVEL"

LOG_LEVELS = frozenset({"ERROR", "WARN", "WARNING", "INFO", "DEBUG"})
DEFAULT_LOG_LEVEL = "INFO"


class MissingConfigOptionError(Exception):
    def __init__(self, option: str) -> None:
        super().__init__(f"Missing required configuration option: {option}")


def get_config_option(name: str) -> str:
    """Get a configuration option from the environment or raise a helpful error"""
    if option := environ.get(name):
        return option
    raise MissingConfigOptionError(name)


def parse_config_option(name: str, parse: Callable[[str], T | None], default: T) -> T:
    """Get a configuration option from the environment, parse it, or return a default"""
    try:
        value = environ.get(name)
        if value is None:
            return default
        result = parse(value)
        if result is None:
            log.error(f"Invalid value for configuration option {name}: {value}")
            return default
        return result
    except ValueError:
        log.error(f"Invalid value for configuration option {name}: {environ.get(name)}")
        return default


def resolve_option(cli_value: str | None, setting: str, required: bool = True) -> str | None:
    """Prefer the command line value, fall back to the environment.
    Raises MissingConfigOptionError if a required option is absent from both"""
    if cli_value:
        return cli_value
    if required:
        return get_config_option(setting)
    return environ.get(setting) or None


def parse_log_level(value: str) -> str | None:
    level = value.strip().upper()
    return level if level in LOG_LEVELS else None


def get_log_level(verbose: bool = False) -> str:
    if verbose:
        return "DEBUG"
    return parse_config_option(LOG_LEVEL_SETTING, parse_log_level, DEFAULT_LOG_LEVEL)
