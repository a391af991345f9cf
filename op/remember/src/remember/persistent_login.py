# persistent_login.py
"""Remember-me logins using the series/token scheme.

A remembered device keeps one ``series`` for its whole life and a ``token``
that is replaced on every successful use. A live series presented with a
stale token means someone else already used the cookie: the series is
revoked and both parties go back to interactive login.
"""
import hmac
from dataclasses import dataclass, field
from typing import Callable, Optional

from .models import (
    AuthResult,
    CookieClaim,
    PersistentLoginToken,
    RememberResult,
    ValidationOutcome,
)
from .log import get_logger
from .settings import Settings
from .store import RotationConflict, SeriesConflict, SeriesNotFound, TokenStore, TokenStoreError
from .tokens import MalformedCookie, decode_cookie_value, new_random_id, now

logger = get_logger(__name__)

MAX_ID_LENGTH = 128


@dataclass(frozen=True)
class PersistentLoginConfig:
    timeout_seconds: int = 30 * 24 * 60 * 60
    new_id: Callable[[], str] = field(default=new_random_id)
    clock: Callable[[], int] = field(default=now)

    @classmethod
    def from_settings(cls, s: Settings) -> "PersistentLoginConfig":
        return cls(timeout_seconds=s.remember_timeout_seconds)


def _well_formed(value: str | None) -> bool:
    return bool(value) and len(value) <= MAX_ID_LENGTH and value.isprintable() and not any(
        c.isspace() for c in value
    )


def _short(series: str) -> str:
    # enough to correlate log lines, not enough to replay
    return series[:8]


class PersistentLoginManager:
    def __init__(self, store: TokenStore, config: PersistentLoginConfig | None = None) -> None:
        self.store = store
        self.config = config or PersistentLoginConfig()

    def cookie_max_age(self) -> int:
        return self.config.timeout_seconds

    # -------- state machine --------

    def validate(self, claim: CookieClaim) -> ValidationOutcome:
        """Classify a claim against the store. Never mutates the store."""
        if not _well_formed(claim.series) or not _well_formed(claim.token):
            return ValidationOutcome.MISSING_SERIES
        try:
            record = self.store.lookup(claim.series)
            if record is None:
                return ValidationOutcome.MISSING_SERIES
            if record.is_expired(self.config.clock()):
                return ValidationOutcome.EXPIRED
            if hmac.compare_digest(claim.token.encode("utf-8"), record.token.encode("utf-8")):
                return ValidationOutcome.ACCEPTED
            return ValidationOutcome.INVALID_TOKEN
        except Exception:
            logger.exception("token store failure during validate", series=_short(claim.series))
            return ValidationOutcome.STORE_ERROR

    def begin_or_renew(self, owner: str, existing_series: str | None = None) -> Optional[PersistentLoginToken]:
        """Issue a new remembered device, or give an existing one a new token.

        Returns None when the store fails; the caller should drop the cookie.
        """
        try:
            if existing_series:
                record = self.store.lookup(existing_series)
                if record is not None and record.owner == owner:
                    if record.is_expired(self.config.clock()):
                        # renewing keeps expires_at, so the cookie would be dead on arrival
                        self.store.revoke(record.series)
                        return self._issue(owner)
                    try:
                        return self._rotate(record)
                    except SeriesNotFound:
                        logger.debug("series vanished during renew", series=_short(existing_series))
            return self._issue(owner)
        except Exception:
            logger.exception("could not remember owner", owner=owner)
            return None

    def _issue(self, owner: str) -> PersistentLoginToken:
        created = self.config.clock()
        # a fresh uuid4 never collides in practice; retry once anyway
        for _ in range(2):
            try:
                return self.store.issue(
                    self.config.new_id(),
                    self.config.new_id(),
                    owner,
                    created_at=created,
                    expires_at=created + self.config.timeout_seconds,
                )
            except SeriesConflict:
                logger.warning("series collision", owner=owner)
        raise TokenStoreError("could not allocate a unique series")

    def _rotate(self, record: PersistentLoginToken, *, expected: str | None = None) -> PersistentLoginToken:
        new_token = self.config.new_id()
        self.store.rotate(record.series, new_token, expected_token=expected)
        return record.with_token(new_token)

    # -------- host integration --------

    def authenticate(self, cookie_value: str | None) -> AuthResult:
        """Validate a raw cookie and apply the outcome's side effects."""
        try:
            claim = decode_cookie_value(cookie_value)
        except MalformedCookie as e:
            logger.warning("discarding malformed remember-me cookie", error=str(e))
            return AuthResult(outcome=ValidationOutcome.MISSING_SERIES, reason="malformed_cookie")

        outcome = self.validate(claim)

        if outcome is ValidationOutcome.ACCEPTED:
            return self._accept(claim)

        if outcome is ValidationOutcome.INVALID_TOKEN:
            self.potential_theft(claim)
            self.forget(claim.series)
            return AuthResult(outcome=outcome, reason="series_revoked")

        logger.debug("discarding remember-me cookie", outcome=outcome.value, series=_short(claim.series))
        return AuthResult(outcome=outcome, reason=outcome.value)

    def _accept(self, claim: CookieClaim) -> AuthResult:
        try:
            record = self.store.lookup(claim.series)
            if record is None:
                raise SeriesNotFound(claim.series)
            rotated = self._rotate(record, expected=claim.token)
        except (RotationConflict, SeriesNotFound):
            # a concurrent request rotated or revoked the series first
            logger.info("lost rotation race", series=_short(claim.series))
            return AuthResult(outcome=ValidationOutcome.STORE_ERROR, reason="rotation_conflict")
        except Exception:
            logger.exception("token store failure during rotate", series=_short(claim.series))
            return AuthResult(outcome=ValidationOutcome.STORE_ERROR, reason="store_error")
        logger.debug("renewed remember-me token", series=_short(claim.series))
        return AuthResult(outcome=ValidationOutcome.ACCEPTED, reason="ok", record=rotated)

    def potential_theft(self, claim: CookieClaim) -> None:
        logger.warning(
            "potential remember-me cookie theft",
            series=_short(claim.series),
            detail="live series presented a stale token",
        )

    def remember(
        self,
        owner: str | None,
        existing_series: str | None = None,
        *,
        do_not_remember: bool = False,
    ) -> RememberResult:
        """Finish a login: issue or renew the cookie unless opted out."""
        if owner is None:
            return RememberResult()
        if do_not_remember:
            # the client drops its cookie, so the stored credential goes too
            self.forget_owned(existing_series, owner)
            return RememberResult(discard_cookie=True)
        record = self.begin_or_renew(owner, existing_series)
        return RememberResult(record=record, discard_cookie=record is None)

    def forget(self, series: str | None) -> bool:
        """Revoke a series (logout or theft). Returns False on store failure."""
        if not series:
            return True
        try:
            self.store.revoke(series)
        except Exception:
            logger.exception("could not revoke series", series=_short(series))
            return False
        return True

    def forget_owned(self, series: str | None, owner: str) -> bool:
        """Revoke a series only if it belongs to owner. False if it was left alone."""
        if not series:
            return False
        try:
            record = self.store.lookup(series)
        except Exception:
            logger.exception("could not look up series", series=_short(series))
            return False
        if record is None or record.owner != owner:
            return False
        return self.forget(series)

    def forget_owner(self, owner: str) -> int:
        try:
            return self.store.revoke_owner(owner)
        except Exception:
            logger.exception("could not revoke series of owner", owner=owner)
            return 0

    def purge_expired(self) -> int:
        try:
            return self.store.purge_expired(self.config.clock())
        except Exception:
            logger.exception("could not purge expired series")
            return 0
