from __future__ import annotations

import json
import re
from importlib.resources import files

from .attributes import AttributeConverter, FieldType, resolve, set_of
from .errors import (
    AwsError,
    ConditionFailedError,
    DynamodelError,
    FieldError,
    NotFoundError,
    OperatorError,
    ReadinessCancelledError,
    SchemaError,
    StateError,
    ValidationError,
)
from .model import Model
from .operators import OperatorCompiler
from .query import QueryCursor, QueryResult, decode_continuation, encode_continuation
from .readiness import TableRegistry, TableState, default_registry, wait_for_active
from .runtime import (
    AwsCallMetric,
    DynamoDBTransport,
    create_boto3_config,
    get_dynamodb_client,
    instrument_boto3_client,
)
from .schema import FieldDefinition, KeyRole, Schema, Throughput, build_create_table_request
from .validation import (
    NameValidationError,
    validate_field_name,
    validate_index_name,
    validate_table_name,
)


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except Exception:
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


__all__ = [
    "AttributeConverter",
    "AwsCallMetric",
    "AwsError",
    "build_create_table_request",
    "ConditionFailedError",
    "create_boto3_config",
    "decode_continuation",
    "default_registry",
    "DynamoDBTransport",
    "DynamodelError",
    "encode_continuation",
    "FieldDefinition",
    "FieldError",
    "FieldType",
    "get_dynamodb_client",
    "instrument_boto3_client",
    "KeyRole",
    "Model",
    "NameValidationError",
    "NotFoundError",
    "OperatorCompiler",
    "OperatorError",
    "QueryCursor",
    "QueryResult",
    "ReadinessCancelledError",
    "resolve",
    "Schema",
    "SchemaError",
    "set_of",
    "StateError",
    "TableRegistry",
    "TableState",
    "Throughput",
    "ValidationError",
    "__repo_version__",
    "__version__",
    "validate_field_name",
    "validate_index_name",
    "validate_table_name",
    "wait_for_active",
]
