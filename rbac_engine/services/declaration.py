"""Loading and validation of the declarative permission document."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping, Union

import yaml
from pydantic import ValidationError

from rbac_engine.schemas.declaration import Declaration


class DeclarationError(Exception):
    """Raised when the declaration is malformed; nothing has been written."""

    def __init__(self, message: str, errors: List[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


def parse_declaration(data: Any) -> Declaration:
    if not isinstance(data, Mapping):
        raise DeclarationError("Declaration must be a mapping with 'permissions' and 'roles' lists")

    try:
        return Declaration.model_validate(data)
    except ValidationError as exc:
        errors = [_format_error(error) for error in exc.errors()]
        raise DeclarationError(f"Invalid declaration ({len(errors)} problem(s))", errors) from exc


def load_declaration(path: Union[str, Path]) -> Declaration:
    """Read and validate a YAML declaration."""

    path = Path(path)
    try:
        with path.open(encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise DeclarationError(f"Declaration file '{path}' not found") from exc
    except yaml.YAMLError as exc:
        raise DeclarationError(f"Declaration file '{path}' is not valid YAML: {exc}") from exc

    return parse_declaration(data)


def _format_error(error: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = str(error.get("msg", "invalid value"))
    message = message.removeprefix("Value error, ")
    return f"{location}: {message}" if location else message
