"""
Conditional write helpers

INSERT ... ON CONFLICT for the two supported backends. These are the only
primitives the pipeline uses to create rows that must exist at most once,
so concurrent scans (even from separate processes) cannot duplicate them.
"""

from typing import Any, Dict, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def _insert_for(db: Session, model):
    # Core insert against the Table so rowcount comes straight from the cursor
    table = model.__table__
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Conditional insert is not implemented for dialect {dialect!r}")


def insert_or_ignore(
    db: Session,
    model,
    values: Dict[str, Any],
    conflict_columns: Iterable[str],
) -> bool:
    """
    Insert a row unless one with the same unique key exists

    Does NOT commit.

    Returns:
        True if the row was inserted, False if the conflict suppressed it
    """
    stmt = (
        _insert_for(db, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
    )
    result = db.execute(stmt)
    return result.rowcount == 1


def upsert(
    db: Session,
    model,
    values: Dict[str, Any],
    conflict_columns: Iterable[str],
    update_columns: Optional[Iterable[str]] = None,
) -> None:
    """
    Insert a row or update the listed columns of the existing one

    Does NOT commit.
    """
    conflict_columns = list(conflict_columns)
    if update_columns is None:
        update_columns = [c for c in values if c not in conflict_columns]

    stmt = _insert_for(db, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    db.execute(stmt)
