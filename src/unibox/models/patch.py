"""Three-state partial updates.

A patch field can be:

* absent: not passed at all, the stored value is left untouched;
* present and null: passed as ``None``, the stored value is cleared;
* present with a value: the stored value is replaced.

Pydantic records which fields were explicitly passed in ``model_fields_set``
(including explicit ``None``), so that set is the presence marker. Code that
applies a patch must go through :meth:`PatchModel.changes` rather than
``model_dump()``, which would turn every absent field into a null.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict


class PatchModel(BaseModel):
    """Base class for patches and drafts with per-field presence semantics."""

    model_config = ConfigDict(extra="forbid")

    def is_set(self, field: str) -> bool:
        """True when the field was explicitly provided (even as ``None``)."""
        return field in self.model_fields_set

    def changes(self) -> dict[str, Any]:
        """Return only the explicitly provided fields, nulls included."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set


def apply_changes(row: Any, changes: dict[str, Any]) -> list[str]:
    """Assign each change onto ``row`` when it differs; return the fields written."""
    written = []
    for field, value in changes.items():
        if getattr(row, field) != value:
            setattr(row, field, value)
            written.append(field)
    return written


def reject_explicit_null(value: Any, field_name: str) -> Any:
    """Validator body for fields that may be omitted but never cleared."""
    if value is None:
        raise ValueError(f"'{field_name}' cannot be cleared")
    return value
