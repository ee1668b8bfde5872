from __future__ import annotations

import sqlite3
from pathlib import Path

from werkzeug.security import generate_password_hash

SCHEMA = """
CREATE TABLE IF NOT EXISTS environments (
    envid INTEGER PRIMARY KEY AUTOINCREMENT,
    envaddr TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT '',
    notes TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS interfaces (
    intid INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    location TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS environment_interface_pairs (
    pairid INTEGER PRIMARY KEY AUTOINCREMENT,
    envid INTEGER NOT NULL,
    intid INTEGER NOT NULL,
    FOREIGN KEY (envid) REFERENCES environments(envid),
    FOREIGN KEY (intid) REFERENCES interfaces(intid)
);

CREATE TABLE IF NOT EXISTS conditions (
    condid INTEGER PRIMARY KEY AUTOINCREMENT,
    studyid INTEGER NOT NULL DEFAULT 0,
    pairid INTEGER,
    name TEXT NOT NULL,
    FOREIGN KEY (pairid) REFERENCES environment_interface_pairs(pairid)
);

CREATE TABLE IF NOT EXISTS maps (
    mapid INTEGER PRIMARY KEY AUTOINCREMENT,
    envid INTEGER NOT NULL,
    topic TEXT NOT NULL,
    continuous INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (envid) REFERENCES environments(envid)
);

CREATE TABLE IF NOT EXISTS nav2ds (
    navid INTEGER PRIMARY KEY AUTOINCREMENT,
    envid INTEGER NOT NULL,
    mapid INTEGER NOT NULL,
    actionserver TEXT NOT NULL,
    action TEXT NOT NULL,
    FOREIGN KEY (envid) REFERENCES environments(envid)
);

CREATE TABLE IF NOT EXISTS colladas (
    colladaid INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    loader TEXT NOT NULL DEFAULT 'COLLADA_LOADER_2'
);

CREATE TABLE IF NOT EXISTS ims (
    imid INTEGER PRIMARY KEY AUTOINCREMENT,
    colladaid INTEGER NOT NULL,
    topic TEXT NOT NULL,
    FOREIGN KEY (colladaid) REFERENCES colladas(colladaid)
);

CREATE TABLE IF NOT EXISTS user_accounts (
    username TEXT PRIMARY KEY,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'admin'
);
"""

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin"


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str | Path) -> None:
    conn = connect(db_path)
    try:
        with conn:
            conn.executescript(SCHEMA)
            migrate_pairs_schema(conn)
            migrate_widget_schema(conn)
            seed_default_accounts(conn)
    finally:
        conn.close()


def migrate_pairs_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_environment_interface_pairs_unique
        ON environment_interface_pairs(envid, intid)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_conditions_study
        ON conditions(studyid, condid)
        """
    )


def migrate_widget_schema(conn: sqlite3.Connection) -> None:
    columns = {row["name"] for row in conn.execute("PRAGMA table_info(maps)").fetchall()}
    if "continuous" not in columns:
        conn.execute("ALTER TABLE maps ADD COLUMN continuous INTEGER NOT NULL DEFAULT 0")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_nav2ds_environment ON nav2ds(envid)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_ims_collada ON ims(colladaid)")


def seed_default_accounts(conn: sqlite3.Connection) -> None:
    account = conn.execute(
        "SELECT username FROM user_accounts WHERE username = ?", (DEFAULT_ADMIN_USERNAME,)
    ).fetchone()
    if account is None:
        conn.execute(
            "INSERT INTO user_accounts(username, password_hash, role) VALUES (?, ?, ?)",
            (DEFAULT_ADMIN_USERNAME, generate_password_hash(DEFAULT_ADMIN_PASSWORD), "admin"),
        )
