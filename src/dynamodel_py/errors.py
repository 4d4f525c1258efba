from __future__ import annotations


class DynamodelError(Exception):
    pass


class ValidationError(DynamodelError):
    pass


class SchemaError(DynamodelError):
    pass


class FieldError(DynamodelError):
    def __init__(self, field: str) -> None:
        super().__init__(f"unknown field: {field}")
        self.field = field


class OperatorError(DynamodelError):
    def __init__(self, operator: str, *, kind: str = "conditional") -> None:
        super().__init__(f'{kind} operator "{operator}" is not supported')
        self.operator = operator


class StateError(DynamodelError):
    pass


class ReadinessCancelledError(StateError):
    pass


class NotFoundError(DynamodelError):
    pass


class ConditionFailedError(DynamodelError):
    pass


class AwsError(DynamodelError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
