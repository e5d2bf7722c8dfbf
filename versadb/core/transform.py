"""
Record transformation for index renames.

Pure functions: no storage access, no mutation of the inputs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .validate import RenameRule


def rename_fields(
    rules: Sequence[RenameRule],
    records: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """Move each rule's old_name field to new_name in every record.

    Rules apply in order, so a later rule sees the result of earlier ones.
    Records without any old_name field come back unchanged (as copies).

    Example:
        >>> rename_fields([RenameRule(old_name="a", new_name="b")], [{"a": 1, "c": 2}])
        [{'c': 2, 'b': 1}]
    """
    migrated = []
    for record in records:
        result = dict(record)
        for rule in rules:
            if rule.old_name in result:
                result[rule.new_name] = result.pop(rule.old_name)
        migrated.append(result)
    return migrated


def project(record: Mapping[str, Any] | None, fields: Sequence[str] | None) -> dict[str, Any] | None:
    """Keep only the requested fields that are present on the record.

    Returns the record itself when no projection is requested, and None
    when none of the requested fields are present.
    """
    if record is None:
        return None
    if not fields:
        return dict(record)
    subset = {name: record[name] for name in fields if name in record}
    return subset or None
