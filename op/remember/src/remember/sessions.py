# sessions.py
# Current-principal sessions: short-lived, server-side, keyed by the sid cookie.
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional

from .db import get_conn, fetchone_dict
from .tokens import new_csrf_token, new_session_id, now, session_expiries

class NewSession(NamedTuple):
    session_id: str
    csrf_token: str
    expires_at: int
    absolute_expires_at: int

def get_session(db_path: str | Path, session_id: str) -> Optional[Dict[str, Any]]:
    conn = get_conn(db_path)
    cur = conn.cursor()
    cur.execute("SELECT * FROM sessions WHERE session_id=?;", (session_id,))
    row = cur.fetchone()
    conn.close()
    return fetchone_dict(row)

def get_live_session(db_path: str | Path, session_id: str | None) -> Optional[Dict[str, Any]]:
    """Session row if it exists, is not revoked and has not timed out."""
    if not session_id:
        return None
    sess = get_session(db_path, session_id)
    if not sess or sess["revoked"] == 1:
        return None
    n = now()
    if sess["expires_at"] <= n or sess["absolute_expires_at"] <= n:
        return None
    return sess

def create_session(db_path: str | Path, user_id: int, ttl_seconds: int, absolute_seconds: int,
                   remember_series: str | None = None) -> NewSession:
    sid = new_session_id()
    csrf = new_csrf_token()
    exp, abs_exp = session_expiries(ttl_seconds, absolute_seconds)
    n = now()
    conn = get_conn(db_path)
    conn.execute("""
        INSERT INTO sessions(session_id, user_id, created_at, last_seen, expires_at, absolute_expires_at, remember_series, csrf_token, revoked)
        VALUES(?,?,?,?,?,?,?,?,0)
    """, (sid, user_id, n, n, exp, abs_exp, remember_series, csrf))
    conn.commit()
    conn.close()
    return NewSession(sid, csrf, exp, abs_exp)

def touch_session(db_path: str | Path, session_id: str, ttl_seconds: int) -> None:
    # refresh idle TTL but not beyond absolute expiry
    conn = get_conn(db_path)
    cur = conn.cursor()
    cur.execute("SELECT absolute_expires_at FROM sessions WHERE session_id=? AND revoked=0;", (session_id,))
    row = cur.fetchone()
    if row:
        n = now()
        new_exp = min(n + ttl_seconds, row["absolute_expires_at"])
        cur.execute("UPDATE sessions SET last_seen=?, expires_at=? WHERE session_id=?;", (n, new_exp, session_id))
        conn.commit()
    conn.close()

def revoke_session(db_path: str | Path, session_id: str, all_for_user: bool = False) -> None:
    conn = get_conn(db_path)
    cur = conn.cursor()
    if all_for_user:
        cur.execute("SELECT user_id FROM sessions WHERE session_id=?;", (session_id,))
        r = cur.fetchone()
        if r:
            cur.execute("UPDATE sessions SET revoked=1 WHERE user_id=?;", (r["user_id"],))
    else:
        cur.execute("UPDATE sessions SET revoked=1 WHERE session_id=?;", (session_id,))
    conn.commit()
    conn.close()
