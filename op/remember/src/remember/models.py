# models.py
from enum import Enum

from pydantic import BaseModel, ConfigDict

# ---------------- persistent login ----------------

class ValidationOutcome(str, Enum):
    ACCEPTED = "accepted"
    INVALID_TOKEN = "invalid_token"   # stale token for a live series: theft signal
    MISSING_SERIES = "missing_series"
    EXPIRED = "expired"
    STORE_ERROR = "store_error"

class PersistentLoginToken(BaseModel):
    """One remembered device: a stable series and its current token."""
    model_config = ConfigDict(frozen=True)

    series: str
    token: str
    owner: str
    created_at: int
    expires_at: int | None = None

    def is_expired(self, at: int) -> bool:
        return self.expires_at is not None and at > self.expires_at

    def with_token(self, token: str) -> "PersistentLoginToken":
        return self.model_copy(update={"token": token})

class CookieClaim(BaseModel):
    """Untrusted (series, token) pair read off a request cookie."""
    model_config = ConfigDict(frozen=True)

    series: str
    token: str

class AuthResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: ValidationOutcome
    reason: str
    record: PersistentLoginToken | None = None  # reissue this when accepted

    @property
    def accepted(self) -> bool:
        return self.outcome is ValidationOutcome.ACCEPTED

    @property
    def discard_cookie(self) -> bool:
        return not self.accepted

    @property
    def owner(self) -> str | None:
        return self.record.owner if self.record else None

class RememberResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: PersistentLoginToken | None = None
    discard_cookie: bool = False

# ---------------- http ----------------

class LoginRequest(BaseModel):
    username: str
    password: str
    remember_me: bool = False

class UserPublic(BaseModel):
    id: int
    username: str
    email: str | None = None
    given_name: str | None = None
    family_name: str | None = None

class LoginResponse(BaseModel):
    user: UserPublic
    csrf_token: str   # return CSRF for subsequent state-changing calls
    remembered: bool = False

class SessionMeResponse(BaseModel):
    session_id: str
    user: UserPublic
    expires_at: int
    absolute_expires_at: int
    via_remember_me: bool = False
    csrf_token: str | None = None  # only when a new session was minted

class LogoutRequest(BaseModel):
    all_devices: bool = False
