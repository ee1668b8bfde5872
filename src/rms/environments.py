from __future__ import annotations

import sqlite3
from dataclasses import dataclass


@dataclass(slots=True)
class Environment:
    envid: int
    envaddr: str
    type: str
    notes: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Environment:
        return cls(envid=int(row["envid"]), envaddr=row["envaddr"], type=row["type"], notes=row["notes"])


@dataclass(slots=True)
class Interface:
    intid: int
    name: str
    location: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Interface:
        return cls(intid=int(row["intid"]), name=row["name"], location=row["location"])


def get_environments(conn: sqlite3.Connection) -> list[Environment]:
    rows = conn.execute("SELECT envid, envaddr, type, notes FROM environments ORDER BY envid").fetchall()
    return [Environment.from_row(row) for row in rows]


def get_environment_by_id(conn: sqlite3.Connection, envid: int) -> Environment | None:
    row = conn.execute(
        "SELECT envid, envaddr, type, notes FROM environments WHERE envid = ?", (envid,)
    ).fetchone()
    return Environment.from_row(row) if row else None


def get_interfaces(conn: sqlite3.Connection) -> list[Interface]:
    rows = conn.execute("SELECT intid, name, location FROM interfaces ORDER BY intid").fetchall()
    return [Interface.from_row(row) for row in rows]


def get_interface_by_id(conn: sqlite3.Connection, intid: int) -> Interface | None:
    row = conn.execute("SELECT intid, name, location FROM interfaces WHERE intid = ?", (intid,)).fetchone()
    return Interface.from_row(row) if row else None


def create_environment(conn: sqlite3.Connection, envaddr: str, type: str = "", notes: str = "") -> Environment:
    with conn:
        cursor = conn.execute(
            "INSERT INTO environments(envaddr, type, notes) VALUES (?, ?, ?)",
            (envaddr, type, notes),
        )
    return Environment(envid=int(cursor.lastrowid), envaddr=envaddr, type=type, notes=notes)


def create_interface(conn: sqlite3.Connection, name: str, location: str) -> Interface:
    with conn:
        cursor = conn.execute("INSERT INTO interfaces(name, location) VALUES (?, ?)", (name, location))
    return Interface(intid=int(cursor.lastrowid), name=name, location=location)
