from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from .errors import NotFound

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Collada:
    """A threejs Collada loader definition. Each one owns its interactive markers."""

    colladaid: int
    name: str
    loader: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Collada:
        return cls(colladaid=int(row["colladaid"]), name=row["name"], loader=row["loader"])


@dataclass(slots=True)
class InteractiveMarker:
    imid: int
    colladaid: int
    topic: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> InteractiveMarker:
        return cls(imid=int(row["imid"]), colladaid=int(row["colladaid"]), topic=row["topic"])


def list_colladas(conn: sqlite3.Connection) -> list[Collada]:
    rows = conn.execute("SELECT colladaid, name, loader FROM colladas ORDER BY colladaid").fetchall()
    return [Collada.from_row(row) for row in rows]


def get_collada_by_id(conn: sqlite3.Connection, colladaid: int) -> Collada | None:
    row = conn.execute(
        "SELECT colladaid, name, loader FROM colladas WHERE colladaid = ?", (colladaid,)
    ).fetchone()
    return Collada.from_row(row) if row else None


def list_markers_by_collada(conn: sqlite3.Connection, colladaid: int) -> list[InteractiveMarker]:
    rows = conn.execute(
        "SELECT imid, colladaid, topic FROM ims WHERE colladaid = ? ORDER BY imid", (colladaid,)
    ).fetchall()
    return [InteractiveMarker.from_row(row) for row in rows]


def create_collada(conn: sqlite3.Connection, name: str, loader: str = "COLLADA_LOADER_2") -> Collada:
    with conn:
        cursor = conn.execute("INSERT INTO colladas(name, loader) VALUES (?, ?)", (name, loader))
    return Collada(colladaid=int(cursor.lastrowid), name=name, loader=loader)


def create_marker(conn: sqlite3.Connection, colladaid: int, topic: str) -> InteractiveMarker:
    if get_collada_by_id(conn, colladaid) is None:
        raise NotFound(f"Collada ID {colladaid} does not exist")
    with conn:
        cursor = conn.execute("INSERT INTO ims(colladaid, topic) VALUES (?, ?)", (colladaid, topic))
    return InteractiveMarker(imid=int(cursor.lastrowid), colladaid=colladaid, topic=topic)


def delete_collada(conn: sqlite3.Connection, colladaid: int) -> int:
    """Delete a Collada and its markers. Returns the number of markers removed."""
    if get_collada_by_id(conn, colladaid) is None:
        raise NotFound(f"Collada ID {colladaid} does not exist")
    with conn:
        removed = conn.execute("DELETE FROM ims WHERE colladaid = ?", (colladaid,)).rowcount
        conn.execute("DELETE FROM colladas WHERE colladaid = ?", (colladaid,))
    logger.info("collada_deleted", extra={"colladaid": colladaid, "markers_removed": removed})
    return removed
