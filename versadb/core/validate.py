"""
Argument validation for versadb operations.

Every public operation validates its arguments here before opening a
connection. Structured arguments (index specs, rename rules, queries)
are parsed into pydantic models; failures become InvalidArgumentError.

Invariants:
    - Validation never touches storage
    - Error messages name the offending argument
    - Optional booleans that are not booleans fall back to False
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    ValidationError,
    field_validator,
)

from ..errors import InvalidArgumentError

M = TypeVar("M", bound=BaseModel)


def _loose_bool(value: Any) -> bool:
    return value if isinstance(value, bool) else False


class _Spec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class IndexSpec(_Spec):
    """Index to create: field name plus uniqueness."""

    name: StrictStr
    unique: bool = False

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("It is not possible to create an index without any character")
        return v

    @field_validator("unique", mode="before")
    @classmethod
    def _unique_default(cls, v: Any) -> bool:
        return _loose_bool(v)


class RenameRule(_Spec):
    """Index rename; the field is moved from old_name to new_name in every record."""

    old_name: StrictStr = Field(validation_alias=AliasChoices("old_name", "oldName"))
    new_name: StrictStr = Field(validation_alias=AliasChoices("new_name", "newName"))
    unique: bool = False

    @field_validator("new_name")
    @classmethod
    def _new_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("It is not possible to create an index without any character")
        return v

    @field_validator("unique", mode="before")
    @classmethod
    def _unique_default(cls, v: Any) -> bool:
        return _loose_bool(v)


class FieldUpdate(_Spec):
    """New value for a field that is already present on a record."""

    index: StrictStr
    value: Any = None


class SelectQuery(_Spec):
    """One lookup of select_many_by_index."""

    index: StrictStr
    value: Any = None
    fields: list[StrictStr] = Field(
        default_factory=list,
        validation_alias=AliasChoices("fields", "specificIndexes"),
    )

    @field_validator("fields", mode="before")
    @classmethod
    def _fields_default(cls, v: Any) -> Any:
        return v if isinstance(v, (list, tuple)) else []


class DeleteQuery(_Spec):
    """One deletion of delete_many_by_index."""

    index: StrictStr
    value: Any = None
    delete_all: bool = Field(
        default=False,
        validation_alias=AliasChoices("delete_all", "all", "deleteAllOccurrences"),
    )

    @field_validator("delete_all", mode="before")
    @classmethod
    def _delete_all_default(cls, v: Any) -> bool:
        return _loose_bool(v)


def check_name(value: Any, argument: str) -> str:
    """Require a non-blank string."""
    if not isinstance(value, str):
        raise InvalidArgumentError(f"{argument} must be a string", argument)
    if not value.strip():
        raise InvalidArgumentError(f"{argument} must not be empty", argument)
    return value


def check_bool(value: Any, argument: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidArgumentError(f"{argument} must be a boolean", argument)
    return value


def _check_list(value: Any, argument: str) -> list[Any]:
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise InvalidArgumentError(f"{argument} must be a list", argument)
    return list(value)


def check_names(values: Any, argument: str) -> list[str]:
    """Require a list of strings."""
    items = _check_list(values, argument)
    for item in items:
        if not isinstance(item, str):
            raise InvalidArgumentError(
                f"All values within {argument} must be of string type", argument
            )
    return items


def check_fields(fields: Any, argument: str = "fields") -> list[str] | None:
    """Projection fields: None for no projection, else a list of strings.

    Blank names are dropped; an empty result means no projection.
    """
    if fields is None:
        return None
    names = [f for f in check_names(fields, argument) if f.strip()]
    return names or None


def check_record(record: Any, argument: str = "record") -> dict[str, Any]:
    """Require a mapping with string field names.

    Values are stored as JSON, so tuples come back as lists.
    """
    if not isinstance(record, Mapping):
        raise InvalidArgumentError(
            f"{argument} must be a mapping of field names to values", argument
        )
    for field in record:
        if not isinstance(field, str):
            raise InvalidArgumentError(
                f"Field names in {argument} must be strings, got {field!r}", argument
            )
    return dict(record)


def check_records(records: Any, argument: str = "records") -> list[dict[str, Any]]:
    items = _check_list(records, argument)
    if not items:
        raise InvalidArgumentError(f"{argument} must have records to be inserted", argument)
    for item in items:
        if not isinstance(item, Mapping):
            raise InvalidArgumentError(f"{argument} must only contain mappings", argument)
    return [check_record(item, argument) for item in items]


def parse_models(
    model: type[M],
    items: Any,
    argument: str,
    allow_empty: bool = True,
) -> list[M]:
    """Parse a list of mappings into models.

    Args:
        model: pydantic model to validate each entry with
        items: Candidate list
        argument: Argument name for error messages
        allow_empty: Whether an empty list is acceptable

    Raises:
        InvalidArgumentError: If the list or any entry is malformed
    """
    entries = _check_list(items, argument)
    if not entries and not allow_empty:
        raise InvalidArgumentError(f"{argument} must not be empty", argument)

    parsed: list[M] = []
    for position, entry in enumerate(entries):
        if isinstance(entry, model):
            parsed.append(entry)
            continue
        if not isinstance(entry, Mapping):
            raise InvalidArgumentError(f"{argument} must only contain objects", argument)
        try:
            parsed.append(model.model_validate(dict(entry)))
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise InvalidArgumentError(
                f"Invalid entry {position} in {argument}: {'; '.join(errors)}",
                argument,
                errors=errors,
            ) from e
    return parsed


def parse_index_specs(items: Any, argument: str = "indexes") -> list[IndexSpec]:
    """Index specs; a bare string is shorthand for a non-unique index."""
    entries = _check_list(items, argument)
    normalized = [{"name": e} if isinstance(e, str) else e for e in entries]
    return parse_models(IndexSpec, normalized, argument)
