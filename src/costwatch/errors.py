from typing import Any


class CostwatchError(Exception):
    """
    base exception for costwatch. Carries an optional context
    dict that is passed along to structured log lines.
    """

    error_type = "CostwatchError"

    def __init__(
        self,
        message: "str",
        *,
        context: "dict[str, Any] | None" = None,
    ) -> "None":
        super().__init__(message)
        self.context: "dict[str, Any]" = context or {}

    def to_dict(self) -> "dict[str, Any]":
        return {
            "error_type": self.error_type,
            "message": str(self),
            "context": self.context,
        }


class ConfigurationError(CostwatchError):
    error_type = "ConfigurationError"


class ServiceAlreadyRegisteredError(CostwatchError):
    error_type = "ServiceAlreadyRegisteredError"


class ReadOnlyRepositoryError(CostwatchError):
    error_type = "ReadOnlyRepositoryError"
