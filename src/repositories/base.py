"""
Shared helpers for asyncpg-backed repositories
"""

import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

import asyncpg
from pydantic import BaseModel

from database.connection import Database


def record_to_dict(record: Optional[asyncpg.Record]) -> Optional[Dict[str, Any]]:
    """Convert a row to a plain dict with UUIDs rendered as strings"""
    if record is None:
        return None
    return {
        key: str(value) if isinstance(value, uuid.UUID) else value
        for key, value in record.items()
    }


def jsonable(value: Any) -> Any:
    """Prepare a value for a json/jsonb parameter"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [jsonable(item) for item in value]
    return value


def build_set_clause(fields: Dict[str, Any], allowed: Iterable[str],
                     start_index: int) -> Tuple[str, List[Any]]:
    """
    Build "col = $n, ..." for an UPDATE from an allow-listed field mapping

    Raises:
        ValueError: If a field is not updatable
    """
    allowed = set(allowed)
    parts = []
    values = []
    for offset, (column, value) in enumerate(fields.items()):
        if column not in allowed:
            raise ValueError(f"Field is not updatable: {column}")
        parts.append(f"{column} = ${start_index + offset}")
        values.append(jsonable(value))
    return ", ".join(parts), values


class BaseRepository:
    """Repositories share the Database wrapper so they can join one transaction"""

    def __init__(self, db: Database):
        self.db = db
