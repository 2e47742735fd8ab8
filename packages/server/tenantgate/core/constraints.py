"""
Identify which named unique constraint an IntegrityError violated.

Drivers that expose structured metadata are read first (asyncpg's
``constraint_name``, psycopg's ``diag.constraint_name``). SQLite only reports
the offending columns ("UNIQUE constraint failed: users.email"), so the
column list is mapped back to a constraint name through the schema's own
named UniqueConstraints.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel

_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: ([\w.]+(?:, [\w.]+)*)")


@lru_cache
def _constraints_by_columns() -> dict[str, str]:
    import tenantgate.models  # noqa: F401

    index: dict[str, str] = {}
    for table in SQLModel.metadata.tables.values():
        for constraint in table.constraints:
            if isinstance(constraint, sa.UniqueConstraint) and constraint.name:
                key = ", ".join(f"{table.name}.{col.name}" for col in constraint.columns)
                index[key] = str(constraint.name)
    return index


def violated_constraint(exc: IntegrityError) -> Optional[str]:
    """Return the name of the violated constraint, or None if it cannot be told."""
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name
        diag = getattr(candidate, "diag", None)
        if diag is not None and getattr(diag, "constraint_name", None):
            return diag.constraint_name

    match = _SQLITE_UNIQUE.search(str(orig))
    if match:
        return _constraints_by_columns().get(match.group(1))
    return None
