"""
Portable statement helpers.
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def insert_ignore(db: AsyncSession, model, values: dict[str, Any], conflict_columns: list[str]):
    """
    INSERT ... ON CONFLICT DO NOTHING for the session's dialect.

    Execute the result and check ``rowcount``: 1 means this call created the
    row, 0 means a row with the same key already existed.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect}")
    return insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
