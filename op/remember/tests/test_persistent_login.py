from __future__ import annotations

import logging
import threading

from conftest import DAY, T0, CountingIds, FakeClock

from remember.models import CookieClaim, ValidationOutcome
from remember.persistent_login import PersistentLoginConfig, PersistentLoginManager
from remember.store import InMemoryTokenStore, TokenStoreError
from remember.tokens import encode_cookie_value


def _claim(record) -> CookieClaim:
    return CookieClaim(series=record.series, token=record.token)


def _cookie(record) -> str:
    return encode_cookie_value(record.series, record.token)


class FlakyStore(InMemoryTokenStore):
    def __init__(self) -> None:
        super().__init__()
        self.down = False
        self.revoked: list[str] = []

    def lookup(self, series):
        if self.down:
            raise TokenStoreError("connection refused")
        return super().lookup(series)

    def revoke(self, series):
        self.revoked.append(series)
        super().revoke(series)


class RacingStore(InMemoryTokenStore):
    """Another request rotates the series right before our rotate lands."""

    def rotate(self, series, new_token, *, expected_token=None):
        if expected_token is not None:
            super().rotate(series, "winner-token")
        super().rotate(series, new_token, expected_token=expected_token)


def test_documented_scenario(store, clock) -> None:
    store.issue("A", "1", "u1", created_at=T0, expires_at=T0 + 30 * DAY)
    manager = PersistentLoginManager(
        store, PersistentLoginConfig(timeout_seconds=30 * DAY, new_id=CountingIds(start=2), clock=clock)
    )

    first = manager.authenticate(encode_cookie_value("A", "1"))
    assert first.outcome is ValidationOutcome.ACCEPTED
    assert first.owner == "u1"
    assert store.lookup("A").token == "2"

    replay = manager.authenticate(encode_cookie_value("A", "1"))
    assert replay.outcome is ValidationOutcome.INVALID_TOKEN
    assert replay.discard_cookie
    assert store.lookup("A") is None

    late = manager.authenticate(encode_cookie_value("A", "2"))
    assert late.outcome is ValidationOutcome.MISSING_SERIES


def test_rotation_invalidates_prior_token(manager) -> None:
    record = manager.begin_or_renew("u1")
    assert manager.validate(_claim(record)) is ValidationOutcome.ACCEPTED
    result = manager.authenticate(_cookie(record))
    assert result.accepted
    assert result.record.series == record.series
    assert result.record.token != record.token
    assert manager.validate(_claim(record)) is ValidationOutcome.INVALID_TOKEN
    assert manager.validate(_claim(result.record)) is ValidationOutcome.ACCEPTED


def test_theft_revokes_whole_series(manager, caplog) -> None:
    record = manager.begin_or_renew("u1")
    renewed = manager.authenticate(_cookie(record)).record

    with caplog.at_level(logging.WARNING, logger="remember"):
        stolen = manager.authenticate(_cookie(record))
    assert stolen.outcome is ValidationOutcome.INVALID_TOKEN
    assert "potential remember-me cookie theft" in caplog.text

    for token in (record.token, renewed.token, "anything"):
        claim = CookieClaim(series=record.series, token=token)
        assert manager.validate(claim) is ValidationOutcome.MISSING_SERIES


def test_unknown_series_is_not_a_mutation() -> None:
    store = FlakyStore()
    manager = PersistentLoginManager(store)
    result = manager.authenticate(encode_cookie_value("never-issued", "t"))
    assert result.outcome is ValidationOutcome.MISSING_SERIES
    assert result.discard_cookie
    assert len(store) == 0
    assert store.revoked == []


def test_expiry_is_absolute_and_not_revoked(manager, store, clock) -> None:
    record = manager.begin_or_renew("u1")
    assert record.expires_at == T0 + 30 * DAY

    # renewals keep the original deadline
    clock.advance(10 * DAY)
    record = manager.authenticate(_cookie(record)).record
    assert record.expires_at == T0 + 30 * DAY

    clock.t = T0 + 30 * DAY + 1
    result = manager.authenticate(_cookie(record))
    assert result.outcome is ValidationOutcome.EXPIRED
    assert result.discard_cookie
    assert store.lookup(record.series) is not None


def test_token_valid_until_the_last_second(manager, clock) -> None:
    record = manager.begin_or_renew("u1")
    clock.t = record.expires_at
    assert manager.validate(_claim(record)) is ValidationOutcome.ACCEPTED


def test_series_survives_renewals(manager) -> None:
    record = manager.begin_or_renew("u1")
    tokens = {record.token}
    for _ in range(5):
        renewed = manager.begin_or_renew("u1", record.series)
        assert renewed.series == record.series
        assert renewed.token not in tokens
        tokens.add(renewed.token)
        record = renewed
    assert manager.store.lookup(record.series).token == record.token


def test_renew_for_another_owner_starts_new_series(manager) -> None:
    theirs = manager.begin_or_renew("u1")
    mine = manager.begin_or_renew("u2", theirs.series)
    assert mine.series != theirs.series
    assert mine.owner == "u2"
    assert manager.store.lookup(theirs.series).token == theirs.token


def test_renew_of_revoked_series_starts_new_series(manager) -> None:
    record = manager.begin_or_renew("u1")
    manager.forget(record.series)
    fresh = manager.begin_or_renew("u1", record.series)
    assert fresh.series != record.series


def test_malformed_claims_never_reach_the_store() -> None:
    store = FlakyStore()
    store.down = True
    manager = PersistentLoginManager(store)
    for claim in (
        CookieClaim(series="", token="t"),
        CookieClaim(series="s", token=""),
        CookieClaim(series="has space", token="t"),
        CookieClaim(series="x" * 500, token="t"),
    ):
        assert manager.validate(claim) is ValidationOutcome.MISSING_SERIES


def test_malformed_cookie_behaves_like_missing_series() -> None:
    manager = PersistentLoginManager(FlakyStore())
    result = manager.authenticate("garbage")
    assert result.outcome is ValidationOutcome.MISSING_SERIES
    assert result.reason == "malformed_cookie"
    assert result.discard_cookie


def test_store_failure_rejects_without_revoking() -> None:
    store = FlakyStore()
    manager = PersistentLoginManager(store)
    record = manager.begin_or_renew("u1")

    store.down = True
    result = manager.authenticate(_cookie(record))
    assert result.outcome is ValidationOutcome.STORE_ERROR
    assert result.discard_cookie
    assert store.revoked == []

    store.down = False
    assert manager.authenticate(_cookie(record)).accepted


def test_begin_or_renew_returns_none_on_store_failure() -> None:
    store = FlakyStore()
    store.down = True
    manager = PersistentLoginManager(store)
    assert manager.begin_or_renew("u1", "some-series") is None
    result = manager.remember("u1", "some-series")
    assert result.record is None
    assert result.discard_cookie


def test_lost_rotation_race_is_a_store_error() -> None:
    store = RacingStore()
    manager = PersistentLoginManager(store)
    record = manager.begin_or_renew("u1")
    result = manager.authenticate(_cookie(record))
    assert result.outcome is ValidationOutcome.STORE_ERROR
    assert result.reason == "rotation_conflict"
    assert store.lookup(record.series).token == "winner-token"


def test_concurrent_replay_accepts_at_most_once() -> None:
    manager = PersistentLoginManager(InMemoryTokenStore())
    cookie = _cookie(manager.begin_or_renew("u1"))
    barrier = threading.Barrier(8)
    outcomes = []

    def worker() -> None:
        barrier.wait()
        outcomes.append(manager.authenticate(cookie).outcome)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(ValidationOutcome.ACCEPTED) == 1
    assert set(outcomes) <= {
        ValidationOutcome.ACCEPTED,
        ValidationOutcome.INVALID_TOKEN,
        ValidationOutcome.STORE_ERROR,
        ValidationOutcome.MISSING_SERIES,
    }


def test_do_not_remember_revokes_the_existing_series(manager) -> None:
    existing = manager.begin_or_renew("u1")
    result = manager.remember("u1", existing.series, do_not_remember=True)
    assert result.record is None
    assert result.discard_cookie
    assert manager.store.lookup(existing.series) is None
    assert manager.validate(_claim(existing)) is ValidationOutcome.MISSING_SERIES


def test_do_not_remember_leaves_other_owners_series(manager) -> None:
    theirs = manager.begin_or_renew("u1")
    result = manager.remember("u2", theirs.series, do_not_remember=True)
    assert result.discard_cookie
    assert manager.store.lookup(theirs.series).token == theirs.token


def test_renewing_an_expired_series_starts_a_new_one(manager, clock) -> None:
    old = manager.begin_or_renew("u1")
    clock.advance(31 * DAY)
    assert manager.validate(_claim(old)) is ValidationOutcome.EXPIRED

    fresh = manager.begin_or_renew("u1", old.series)
    assert fresh.series != old.series
    assert fresh.expires_at == clock() + 30 * DAY
    assert manager.validate(_claim(fresh)) is ValidationOutcome.ACCEPTED
    assert manager.store.lookup(old.series) is None


def test_remember_without_owner_is_a_noop(manager) -> None:
    result = manager.remember(None)
    assert result.record is None
    assert not result.discard_cookie


def test_remember_issues_then_renews(manager) -> None:
    first = manager.remember("u1").record
    second = manager.remember("u1", first.series).record
    assert second.series == first.series
    assert second.token != first.token


def test_forget_is_idempotent(manager) -> None:
    record = manager.begin_or_renew("u1")
    assert manager.forget(record.series)
    assert manager.forget(record.series)
    assert manager.forget(None)
    assert manager.validate(_claim(record)) is ValidationOutcome.MISSING_SERIES


def test_forget_owner(manager) -> None:
    a = manager.begin_or_renew("u1")
    b = manager.begin_or_renew("u1")
    c = manager.begin_or_renew("u2")
    assert manager.forget_owner("u1") == 2
    assert manager.validate(_claim(a)) is ValidationOutcome.MISSING_SERIES
    assert manager.validate(_claim(b)) is ValidationOutcome.MISSING_SERIES
    assert manager.validate(_claim(c)) is ValidationOutcome.ACCEPTED


def test_default_config_uses_uuid_ids() -> None:
    manager = PersistentLoginManager(InMemoryTokenStore(), PersistentLoginConfig(clock=FakeClock()))
    record = manager.begin_or_renew("u1")
    assert len(record.series) == 36 and len(record.token) == 36
    assert record.series != record.token
    assert manager.cookie_max_age() == 30 * DAY


def test_theft_log_omits_cookie_secrets(caplog) -> None:
    manager = PersistentLoginManager(InMemoryTokenStore())
    record = manager.begin_or_renew("u1")
    manager.authenticate(_cookie(record))
    with caplog.at_level(logging.DEBUG, logger="remember"):
        manager.authenticate(_cookie(record))
    assert "theft" in caplog.text
    assert record.token not in caplog.text
    assert record.series not in caplog.text
    assert record.series[:8] in caplog.text


def test_purge_expired_survives_store_failure() -> None:
    class BrokenPurge(InMemoryTokenStore):
        def purge_expired(self, now):
            raise TokenStoreError("disk I/O error")

    assert PersistentLoginManager(BrokenPurge()).purge_expired() == 0


def test_purge_expired_drops_only_dead_series(manager, clock) -> None:
    old = manager.begin_or_renew("u1")
    clock.advance(20 * DAY)
    young = manager.begin_or_renew("u1")
    clock.advance(11 * DAY)
    assert manager.purge_expired() == 1
    assert manager.store.lookup(old.series) is None
    assert manager.store.lookup(young.series) is not None
