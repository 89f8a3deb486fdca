# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.

# stdlib
from json import JSONDecodeError, loads
from typing import Any, TypeAlias

# 3p
from jsonschema import ValidationError, validate

# project
from workflows.client.errors import InvalidResponseError

Schema: TypeAlias = dict[str, Any]

# az output carries many more fields than we read, so extra properties are always allowed


def list_of(schema: Schema) -> Schema:
    return {"type": "array", "items": schema}


ACCOUNT_SCHEMA: Schema = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},  # subscription id
        "name": {"type": "string"},  # subscription name
        "tenantId": {"type": "string"},
        "user": {
            "type": "object",
            "properties": {"name": {"type": "string"}},
        },
    },
    "required": ["id", "tenantId"],
}

APPLICATION_SCHEMA: Schema = {
    "type": "object",
    "properties": {
        "appId": {"type": "string"},
        "id": {"type": "string"},  # object id
        "displayName": {"type": "string"},
    },
    "required": ["appId", "id", "displayName"],
}
APPLICATION_LIST_SCHEMA = list_of(APPLICATION_SCHEMA)

SERVICE_PRINCIPAL_SCHEMA: Schema = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},  # object id
        "appId": {"type": "string"},
        "servicePrincipalType": {"type": ["string", "null"]},
    },
    "required": ["id", "appId"],
}
SERVICE_PRINCIPAL_LIST_SCHEMA = list_of(SERVICE_PRINCIPAL_SCHEMA)

FEDERATED_CREDENTIAL_SCHEMA: Schema = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "issuer": {"type": "string"},
        "subject": {"type": "string"},
        "audiences": {"type": "array", "items": {"type": "string"}},
        "description": {"type": ["string", "null"]},
    },
    "required": ["name", "issuer", "subject", "audiences"],
}
FEDERATED_CREDENTIAL_LIST_SCHEMA = list_of(FEDERATED_CREDENTIAL_SCHEMA)

ROLE_ASSIGNMENT_SCHEMA: Schema = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "principalId": {"type": "string"},
        "roleDefinitionName": {"type": "string"},
        "scope": {"type": "string"},
    },
    "required": ["principalId", "roleDefinitionName", "scope"],
}
ROLE_ASSIGNMENT_LIST_SCHEMA = list_of(ROLE_ASSIGNMENT_SCHEMA)


def parse_response(raw: str, schema: Schema) -> Any:
    """Parse JSON output from the provider and validate it, raising InvalidResponseError if either step fails"""
    try:
        response = loads(raw)
        validate(instance=response, schema=schema)
        return response
    except JSONDecodeError as e:
        raise InvalidResponseError(f"Provider returned invalid JSON: {e}") from e
    except ValidationError as e:
        raise InvalidResponseError(f"Provider returned an unexpected response shape: {e.message}") from e
