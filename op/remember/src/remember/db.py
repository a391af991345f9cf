# db.py
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional

def get_conn(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False, timeout=5.0)
    conn.row_factory = sqlite3.Row
    return conn

def init_db(db_path: str | Path, dev_local_users: bool = True) -> None:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_conn(path)
    cur = conn.cursor()

    # Improve concurrency for dev
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")

    # Remembered devices: one row per series, holding only the latest token
    cur.execute("""
    CREATE TABLE IF NOT EXISTS persistent_logins (
        series     TEXT PRIMARY KEY,
        token      TEXT NOT NULL,
        owner      TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        expires_at INTEGER
    );""")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_persistent_logins_owner ON persistent_logins(owner);")

    # Current-principal sessions
    cur.execute("""
    CREATE TABLE IF NOT EXISTS sessions (
        session_id TEXT PRIMARY KEY,
        user_id INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        last_seen  INTEGER NOT NULL,
        expires_at INTEGER NOT NULL,
        absolute_expires_at INTEGER NOT NULL,
        remember_series TEXT,
        csrf_token TEXT NOT NULL,
        revoked    INTEGER NOT NULL DEFAULT 0
    );""")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);")

    # DEV-ONLY: local users table
    if dev_local_users:
        cur.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            email TEXT UNIQUE,
            given_name TEXT,
            family_name TEXT,
            password_changed_at INTEGER NOT NULL
        );""")

    conn.commit()
    conn.close()

def fetchone_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    return dict(row) if row else None
