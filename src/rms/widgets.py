from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass

from flask import current_app, render_template
from markupsafe import Markup

INVALID_MAP_HTML = Markup("<h2>Navigation has invalid map ID.</h2>")
DEFAULT_CANVAS_WIDTH = 480
DEFAULT_CANVAS_HEIGHT = 360
DEFAULT_MESSAGING_CLIENT_HANDLE = "ros"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Map2D:
    mapid: int
    envid: int
    topic: str
    continuous: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Map2D:
        return cls(
            mapid=int(row["mapid"]),
            envid=int(row["envid"]),
            topic=row["topic"],
            continuous=bool(row["continuous"]),
        )


@dataclass(slots=True)
class Nav2D:
    navid: int
    envid: int
    mapid: int
    actionserver: str
    action: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Nav2D:
        return cls(
            navid=int(row["navid"]),
            envid=int(row["envid"]),
            mapid=int(row["mapid"]),
            actionserver=row["actionserver"],
            action=row["action"],
        )


def get_map_by_id(conn: sqlite3.Connection, mapid: int) -> Map2D | None:
    row = conn.execute("SELECT mapid, envid, topic, continuous FROM maps WHERE mapid = ?", (mapid,)).fetchone()
    return Map2D.from_row(row) if row else None


def get_nav2d_by_id(conn: sqlite3.Connection, navid: int) -> Nav2D | None:
    row = conn.execute(
        "SELECT navid, envid, mapid, actionserver, action FROM nav2ds WHERE navid = ?", (navid,)
    ).fetchone()
    return Nav2D.from_row(row) if row else None


def get_nav2ds_by_environment(conn: sqlite3.Connection, envid: int) -> list[Nav2D]:
    rows = conn.execute(
        "SELECT navid, envid, mapid, actionserver, action FROM nav2ds WHERE envid = ? ORDER BY navid",
        (envid,),
    ).fetchall()
    return [Nav2D.from_row(row) for row in rows]


def create_map(conn: sqlite3.Connection, envid: int, topic: str, continuous: bool = False) -> Map2D:
    with conn:
        cursor = conn.execute(
            "INSERT INTO maps(envid, topic, continuous) VALUES (?, ?, ?)",
            (envid, topic, 1 if continuous else 0),
        )
    return Map2D(mapid=int(cursor.lastrowid), envid=envid, topic=topic, continuous=continuous)


def create_nav2d(conn: sqlite3.Connection, envid: int, mapid: int, actionserver: str, action: str) -> Nav2D:
    with conn:
        cursor = conn.execute(
            "INSERT INTO nav2ds(envid, mapid, actionserver, action) VALUES (?, ?, ?, ?)",
            (envid, mapid, actionserver, action),
        )
    return Nav2D(navid=int(cursor.lastrowid), envid=envid, mapid=mapid, actionserver=actionserver, action=action)


def render_nav_widget(
    conn: sqlite3.Connection,
    nav_config: Nav2D,
    width: int | None = None,
    height: int | None = None,
) -> Markup:
    """Render the canvas and script block for a Nav2D widget.

    The script expects the page to define the messaging client under the name
    configured as ``MESSAGING_CLIENT_HANDLE``. A config pointing at a missing map
    renders a short error heading instead of the widget.
    """
    map2d = get_map_by_id(conn, nav_config.mapid)
    if map2d is None:
        logger.warning("nav_widget_invalid_map", extra={"navid": nav_config.navid, "mapid": nav_config.mapid})
        return INVALID_MAP_HTML

    return Markup(
        render_template(
            "widgets/nav2d.html",
            canvas_id=f"nav-{uuid.uuid4().hex}",
            width=DEFAULT_CANVAS_WIDTH if width is None else width,
            height=DEFAULT_CANVAS_HEIGHT if height is None else height,
            client_handle=current_app.config.get("MESSAGING_CLIENT_HANDLE", DEFAULT_MESSAGING_CLIENT_HANDLE),
            nav=nav_config,
            map2d=map2d,
        )
    )
