from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from flask import render_template
from markupsafe import Markup

from .environments import (
    Environment,
    Interface,
    get_environment_by_id,
    get_environments,
    get_interface_by_id,
    get_interfaces,
)
from .errors import DuplicateId, DuplicatePair, InvalidFieldSet, InvalidReference, MissingId, NotFound
from .widgets import Nav2D, get_nav2ds_by_environment

PAIR_FIELDS = ("pairid", "envid", "intid")
INTERFACE_LOCATION_PREFIX = "api/robot_environments/interfaces/"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EnvironmentInterfacePair:
    pairid: int
    envid: int
    intid: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> EnvironmentInterfacePair:
        return cls(pairid=int(row["pairid"]), envid=int(row["envid"]), intid=int(row["intid"]))

    def as_dict(self) -> dict[str, int]:
        return {"pairid": self.pairid, "envid": self.envid, "intid": self.intid}


@dataclass(slots=True)
class RobotEnvironment:
    """Everything an interface page needs to talk to one robot environment."""

    pair: EnvironmentInterfacePair
    environment: Environment
    interface: Interface
    nav2ds: list[Nav2D] = field(default_factory=list)


def _as_id(value: Any, name: str) -> int:
    # bools and floats would be silently coerced by int()
    if isinstance(value, (bool, float)):
        raise InvalidFieldSet(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidFieldSet(f"{name} must be an integer, got {value!r}") from None


def _pair_id_taken(conn: sqlite3.Connection, pairid: int) -> bool:
    row = conn.execute("SELECT 1 FROM environment_interface_pairs WHERE pairid = ?", (pairid,)).fetchone()
    return row is not None


def valid_pair_fields(body: dict[str, Any]) -> bool:
    return body.get("envid") is not None and body.get("intid") is not None and len(body) == 2


def list_pairs(conn: sqlite3.Connection) -> list[EnvironmentInterfacePair]:
    rows = conn.execute("SELECT pairid, envid, intid FROM environment_interface_pairs").fetchall()
    return [EnvironmentInterfacePair.from_row(row) for row in rows]


def get_pair_by_id(conn: sqlite3.Connection, pairid: int) -> EnvironmentInterfacePair | None:
    row = conn.execute(
        "SELECT pairid, envid, intid FROM environment_interface_pairs WHERE pairid = ?", (pairid,)
    ).fetchone()
    return EnvironmentInterfacePair.from_row(row) if row else None


def get_pairs_by_environment(conn: sqlite3.Connection, envid: int) -> list[EnvironmentInterfacePair]:
    rows = conn.execute(
        "SELECT pairid, envid, intid FROM environment_interface_pairs WHERE envid = ?", (envid,)
    ).fetchall()
    return [EnvironmentInterfacePair.from_row(row) for row in rows]


def get_pair_by_environment_and_interface(
    conn: sqlite3.Connection, envid: int, intid: int
) -> EnvironmentInterfacePair | None:
    row = conn.execute(
        "SELECT pairid, envid, intid FROM environment_interface_pairs WHERE envid = ? AND intid = ?",
        (envid, intid),
    ).fetchone()
    return EnvironmentInterfacePair.from_row(row) if row else None


def create_pair(conn: sqlite3.Connection, envid: Any, intid: Any) -> EnvironmentInterfacePair:
    envid = _as_id(envid, "envid")
    intid = _as_id(intid, "intid")
    if get_pair_by_environment_and_interface(conn, envid, intid):
        raise DuplicatePair(f"Environment-interface pair {envid}-{intid} already exists")

    try:
        with conn:
            cursor = conn.execute(
                "INSERT INTO environment_interface_pairs(envid, intid) VALUES (?, ?)",
                (envid, intid),
            )
    except sqlite3.IntegrityError:
        raise DuplicatePair(f"Environment-interface pair {envid}-{intid} already exists") from None

    pair = EnvironmentInterfacePair(pairid=int(cursor.lastrowid), envid=envid, intid=intid)
    logger.info("pair_created", extra=pair.as_dict())
    return pair


def update_pair(conn: sqlite3.Connection, fields: dict[str, Any]) -> EnvironmentInterfacePair:
    """Apply a partial update to a pair.

    ``fields`` must contain ``id`` (the pair being edited) and may contain any of
    ``pairid``, ``envid`` and ``intid``. Unknown keys or keys given as ``None``
    reject the whole update. An update with only ``id`` changes nothing and
    returns the stored pair.
    """
    if fields.get("id") is None:
        raise MissingId("ID field missing in update")

    unknown = sorted(set(fields) - {"id", *PAIR_FIELDS})
    if unknown:
        raise InvalidFieldSet(f"Unrecognized fields given: {', '.join(unknown)}")

    changes = {name: _as_id(fields[name], name) for name in PAIR_FIELDS if fields.get(name) is not None}
    if len(changes) != len(fields) - 1:
        raise InvalidFieldSet("Too many fields given.")

    pairid = _as_id(fields["id"], "id")
    pair = get_pair_by_id(conn, pairid)
    if pair is None:
        raise NotFound(f"Environment-interface pair ID {pairid} does not exist")
    if not changes:
        return pair

    updated = EnvironmentInterfacePair(
        pairid=changes.get("pairid", pair.pairid),
        envid=changes.get("envid", pair.envid),
        intid=changes.get("intid", pair.intid),
    )
    if updated.pairid != pair.pairid and get_pair_by_id(conn, updated.pairid):
        raise DuplicateId(f"Environment-interface pair ID {updated.pairid} already exists")
    if (updated.envid, updated.intid) != (pair.envid, pair.intid) and get_pair_by_environment_and_interface(
        conn, updated.envid, updated.intid
    ):
        raise DuplicatePair(f"Environment-interface pair {updated.envid}-{updated.intid} already exists")

    try:
        with conn:
            conn.execute(
                "UPDATE environment_interface_pairs SET pairid = ?, envid = ?, intid = ? WHERE pairid = ?",
                (updated.pairid, updated.envid, updated.intid, pair.pairid),
            )
    except sqlite3.IntegrityError:
        if updated.pairid != pair.pairid and _pair_id_taken(conn, updated.pairid):
            raise DuplicateId(f"Environment-interface pair ID {updated.pairid} already exists") from None
        raise DuplicatePair(f"Environment-interface pair {updated.envid}-{updated.intid} already exists") from None

    logger.info("pair_updated", extra={"previous_pairid": pair.pairid, **updated.as_dict()})
    return updated


def delete_pair_by_id(conn: sqlite3.Connection, pairid: Any) -> None:
    pairid = _as_id(pairid, "id")
    if get_pair_by_id(conn, pairid) is None:
        raise NotFound(f"Environment-interface pair ID {pairid} does not exist")
    with conn:
        conn.execute("DELETE FROM environment_interface_pairs WHERE pairid = ?", (pairid,))
    logger.info("pair_deleted", extra={"pairid": pairid})


def render_pair_editor(conn: sqlite3.Connection, pairid: int | None, action: str = "") -> Markup:
    # an unknown ID renders the same blank form as a new pair
    pair = get_pair_by_id(conn, pairid) if pairid is not None else None
    environments = [
        {
            "value": env.envid,
            "label": f"{env.envid}: {env.envaddr} -- {env.type} :: {env.notes}",
            "selected": pair is not None and env.envid == pair.envid,
        }
        for env in get_environments(conn)
    ]
    interfaces = [
        {
            "value": intf.intid,
            "label": f"{intf.intid}: {intf.name} -- {INTERFACE_LOCATION_PREFIX}{intf.location}",
            "selected": pair is not None and intf.intid == pair.intid,
        }
        for intf in get_interfaces(conn)
    ]
    return Markup(
        render_template(
            "robot_environments/pair_editor.html",
            pair=pair,
            environments=environments,
            interfaces=interfaces,
            action=action,
        )
    )


def load_robot_environment(conn: sqlite3.Connection, pairid: int) -> RobotEnvironment | None:
    pair = get_pair_by_id(conn, pairid)
    if pair is None:
        return None

    environment = get_environment_by_id(conn, pair.envid)
    if environment is None:
        raise InvalidReference(f"Environment-interface pair {pair.pairid} has invalid environment ID {pair.envid}")
    interface = get_interface_by_id(conn, pair.intid)
    if interface is None:
        raise InvalidReference(f"Environment-interface pair {pair.pairid} has invalid interface ID {pair.intid}")

    return RobotEnvironment(
        pair=pair,
        environment=environment,
        interface=interface,
        nav2ds=get_nav2ds_by_environment(conn, environment.envid),
    )
