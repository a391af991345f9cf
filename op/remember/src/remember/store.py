# store.py
"""Token stores: series -> latest token, plus owner and expiry.

Every operation is atomic per series. A store keeps only the most recently
issued token for a series, never a history of old ones.
"""
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from .db import get_conn
from .models import PersistentLoginToken


class TokenStoreError(Exception):
    """Backing store unavailable or in an unexpected state."""


class SeriesNotFound(TokenStoreError):
    pass


class SeriesConflict(TokenStoreError):
    """issue() was called with a series that already exists."""


class RotationConflict(TokenStoreError):
    """Conditional rotate lost the race: the stored token already changed."""


class TokenStore(ABC):

    @abstractmethod
    def lookup(self, series: str) -> Optional[PersistentLoginToken]:
        """Current record for a series, or None."""

    @abstractmethod
    def issue(
        self,
        series: str,
        token: str,
        owner: str,
        *,
        created_at: int,
        expires_at: int | None = None,
    ) -> PersistentLoginToken:
        """Create a record. Raises SeriesConflict if the series exists."""

    @abstractmethod
    def rotate(self, series: str, new_token: str, *, expected_token: str | None = None) -> None:
        """Replace the token of an existing series.

        Raises SeriesNotFound if the series is gone. With ``expected_token``
        the write only happens while the stored token still equals it,
        otherwise RotationConflict.
        """

    @abstractmethod
    def revoke(self, series: str) -> None:
        """Delete a series. Missing series are ignored."""

    @abstractmethod
    def revoke_owner(self, owner: str) -> int:
        """Delete every series of a principal, returns how many."""

    @abstractmethod
    def purge_expired(self, now: int) -> int:
        """Drop records past their absolute expiry, returns how many."""


class InMemoryTokenStore(TokenStore):
    """Reference store. One lock guards the dict; fine for a single process."""

    def __init__(self) -> None:
        self._records: Dict[str, PersistentLoginToken] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def lookup(self, series):
        with self._lock:
            return self._records.get(series)

    def issue(self, series, token, owner, *, created_at, expires_at=None):
        record = PersistentLoginToken(
            series=series, token=token, owner=owner,
            created_at=created_at, expires_at=expires_at,
        )
        with self._lock:
            if series in self._records:
                raise SeriesConflict(series)
            self._records[series] = record
        return record

    def rotate(self, series, new_token, *, expected_token=None):
        with self._lock:
            current = self._records.get(series)
            if current is None:
                raise SeriesNotFound(series)
            if expected_token is not None and current.token != expected_token:
                raise RotationConflict(series)
            self._records[series] = current.with_token(new_token)

    def revoke(self, series):
        with self._lock:
            self._records.pop(series, None)

    def revoke_owner(self, owner):
        with self._lock:
            doomed = [s for s, r in self._records.items() if r.owner == owner]
            for s in doomed:
                del self._records[s]
        return len(doomed)

    def purge_expired(self, now):
        with self._lock:
            doomed = [s for s, r in self._records.items() if r.is_expired(now)]
            for s in doomed:
                del self._records[s]
        return len(doomed)


class SqliteTokenStore(TokenStore):
    """``persistent_logins`` table; see db.init_db for the schema."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = db_path

    def _conn(self) -> sqlite3.Connection:
        try:
            return get_conn(self.db_path)
        except sqlite3.Error as e:
            raise TokenStoreError(f"cannot open {self.db_path}") from e

    def lookup(self, series):
        conn = self._conn()
        try:
            cur = conn.execute("SELECT * FROM persistent_logins WHERE series=?;", (series,))
            row = cur.fetchone()
        except sqlite3.Error as e:
            raise TokenStoreError("lookup failed") from e
        finally:
            conn.close()
        if row is None:
            return None
        return PersistentLoginToken(**dict(row))

    def issue(self, series, token, owner, *, created_at, expires_at=None):
        conn = self._conn()
        try:
            conn.execute("""
                INSERT INTO persistent_logins(series, token, owner, created_at, expires_at)
                VALUES(?,?,?,?,?)
            """, (series, token, owner, created_at, expires_at))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise SeriesConflict(series) from e
        except sqlite3.Error as e:
            raise TokenStoreError("issue failed") from e
        finally:
            conn.close()
        return PersistentLoginToken(
            series=series, token=token, owner=owner,
            created_at=created_at, expires_at=expires_at,
        )

    def rotate(self, series, new_token, *, expected_token=None):
        conn = self._conn()
        try:
            # single UPDATE: the token compare and the write can't interleave
            if expected_token is None:
                cur = conn.execute(
                    "UPDATE persistent_logins SET token=? WHERE series=?;",
                    (new_token, series),
                )
            else:
                cur = conn.execute(
                    "UPDATE persistent_logins SET token=? WHERE series=? AND token=?;",
                    (new_token, series, expected_token),
                )
            conn.commit()
            if cur.rowcount == 1:
                return
            exists = conn.execute(
                "SELECT 1 FROM persistent_logins WHERE series=?;", (series,)
            ).fetchone()
        except sqlite3.Error as e:
            raise TokenStoreError("rotate failed") from e
        finally:
            conn.close()
        if exists is None:
            raise SeriesNotFound(series)
        raise RotationConflict(series)

    def revoke(self, series):
        self._delete("DELETE FROM persistent_logins WHERE series=?;", (series,))

    def revoke_owner(self, owner):
        return self._delete("DELETE FROM persistent_logins WHERE owner=?;", (owner,))

    def purge_expired(self, now):
        return self._delete(
            "DELETE FROM persistent_logins WHERE expires_at IS NOT NULL AND expires_at < ?;",
            (now,),
        )

    def _delete(self, sql: str, params: tuple) -> int:
        conn = self._conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.rowcount
        except sqlite3.Error as e:
            raise TokenStoreError("delete failed") from e
        finally:
            conn.close()
