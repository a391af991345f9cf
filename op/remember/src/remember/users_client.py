# users_client.py
import time
from pathlib import Path
from typing import Optional, Dict, Any
from .db import get_conn, fetchone_dict
from .security import hash_password, verify_password

def get_user_by_username(db_path: str | Path, username: str) -> Optional[Dict[str, Any]]:
    conn = get_conn(db_path)
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE username = ?;", (username,))
    row = cur.fetchone()
    conn.close()
    return fetchone_dict(row)

def get_user_by_id(db_path: str | Path, uid: int) -> Optional[Dict[str, Any]]:
    conn = get_conn(db_path)
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE id = ?;", (uid,))
    row = cur.fetchone()
    conn.close()
    return fetchone_dict(row)

def create_user_dev(db_path: str | Path, username: str, password: str, email: str | None = None,
                    given_name: str | None = None, family_name: str | None = None,
                    rounds: int = 12) -> Dict[str, Any]:
    conn = get_conn(db_path)
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO users(username, password_hash, email, given_name, family_name, password_changed_at)
        VALUES(?,?,?,?,?,?)
    """, (username, hash_password(password, rounds=rounds), email, given_name, family_name, int(time.time())))
    conn.commit()
    cur.execute("SELECT * FROM users WHERE username=?", (username,))
    row = cur.fetchone()
    conn.close()
    return fetchone_dict(row)  # type: ignore[return-value]

def verify_user_password(user: Dict[str, Any], password: str) -> bool:
    return verify_password(password, user["password_hash"])
