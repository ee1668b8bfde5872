from __future__ import annotations

import sqlite3
from dataclasses import dataclass


@dataclass(slots=True)
class Condition:
    condid: int
    studyid: int
    pairid: int | None
    name: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Condition:
        return cls(
            condid=int(row["condid"]),
            studyid=int(row["studyid"]),
            pairid=int(row["pairid"]) if row["pairid"] is not None else None,
            name=row["name"],
        )


def list_conditions(conn: sqlite3.Connection) -> list[Condition]:
    rows = conn.execute("SELECT condid, studyid, pairid, name FROM conditions").fetchall()
    return [Condition.from_row(row) for row in rows]


def get_condition_by_id(conn: sqlite3.Connection, condid: int) -> Condition | None:
    row = conn.execute(
        "SELECT condid, studyid, pairid, name FROM conditions WHERE condid = ?", (condid,)
    ).fetchone()
    return Condition.from_row(row) if row else None


def get_conditions_by_study(conn: sqlite3.Connection, studyid: int) -> list[Condition]:
    rows = conn.execute(
        "SELECT condid, studyid, pairid, name FROM conditions WHERE studyid = ? ORDER BY condid",
        (studyid,),
    ).fetchall()
    return [Condition.from_row(row) for row in rows]
