"""Tests for the claim session state machine."""
import logging
import time

import pytest

from earthwalk_events import (
    ClosureDetected,
    CollisionWarningChanged,
    SessionErrorRaised,
    SessionStateChanged,
    SpeedViolationEnded,
    SpeedViolationStarted,
    create_logger,
)
from earthwalk_geo import WarningLevel
from earthwalk_session import (
    AuthorizationStatus,
    ClaimSession,
    ClaimState,
    EventLoop,
    InMemoryTerritoryStore,
    LocationError,
    ReplayLocationSource,
    TerritoryRegistry,
    TerritoryStoreError,
    ThreadScheduler,
)

from helpers import BOW_TIE, SQUARE_LOOP, T0, offset, sample, square_territory, walk

CAR_SPEED = 35 / 3.6


class FailingUploadStore(InMemoryTerritoryStore):
    """Rejects the first `failures` uploads."""

    def __init__(self, territories=(), failures=1):
        super().__init__(territories)
        self.failures = failures
        self.upload_calls = 0

    def upload_territory(self, owner_id, path, area_m2, started_at):
        self.upload_calls += 1
        if self.upload_calls <= self.failures:
            raise TerritoryStoreError("connection reset")
        return super().upload_territory(owner_id, path, area_m2, started_at)


@pytest.fixture
def make_claim(scheduler, bus):
    def factory(territories=(), samples=(), store=None, dispatch=None,
                authorization=AuthorizationStatus.AUTHORIZED, grant_on_request=True):
        store = store if store is not None else InMemoryTerritoryStore(territories)
        registry = TerritoryRegistry(
            store, sleep=lambda s: None,
            logger=create_logger("test.registry", level=logging.CRITICAL),
        )
        registry.refresh()
        source = ReplayLocationSource(samples, authorization=authorization,
                                      grant_on_request=grant_on_request)
        session = ClaimSession(
            registry, store, source,
            bus=bus,
            scheduler=scheduler,
            dispatch=dispatch,
            logger=create_logger("test.claim", level=logging.CRITICAL),
        )
        return session, source
    return factory


def replay(source, scheduler):
    return source.replay(before_each=lambda s: scheduler.advance_to(s.timestamp))


def states(recorder):
    return [e.current for e in recorder.of_type(SessionStateChanged)]


def warning_changes(recorder):
    return [(e.previous, e.current) for e in recorder.of_type(CollisionWarningChanged)]


# ----------------------------------------------------------------
# Happy path
# ----------------------------------------------------------------

class TestClaimLifecycle:
    def test_walk_close_validate_upload(self, make_claim, scheduler, recorder):
        session, source = make_claim(samples=walk(SQUARE_LOOP))
        result = session.start(offset(0, 0))
        assert result is not None and not result.has_collision
        assert session.state is ClaimState.TRACKING
        assert session.started_at == T0

        # updates stop once the loop closes
        assert replay(source, scheduler) == 11
        assert session.state is ClaimState.CLOSED
        assert session.validation.is_valid
        assert not source.is_updating
        assert scheduler.pending_count == 0

        closure = recorder.of_type(ClosureDetected)
        assert len(closure) == 1
        assert closure[0].point_count == 11

        assert session.upload()
        assert session.state is ClaimState.UPLOADED
        assert session.territory.owner_id == "local-player"
        assert session.territory.created_at == T0
        assert len(session.store) == 1
        assert states(recorder) == ["tracking", "closed", "uploaded"]

    def test_started_at_is_posix_time_on_real_clock(self, bus):
        # timer clock stands in for time.monotonic(), seconds since boot
        store = InMemoryTerritoryStore()
        scheduler = ThreadScheduler(clock=lambda: 5.0)
        session = ClaimSession(
            TerritoryRegistry(store, sleep=lambda s: None,
                              logger=create_logger("test.registry", level=logging.CRITICAL)),
            store,
            ReplayLocationSource(),
            bus=bus,
            scheduler=scheduler,
            logger=create_logger("test.claim", level=logging.CRITICAL),
        )
        try:
            before = time.time()
            session.start(offset(0, 0))
            assert before <= session.started_at <= time.time()
            assert session.started_at > 1.6e9
        finally:
            session.stop()
            scheduler.shutdown()

    def test_start_ignored_while_tracking(self, make_claim):
        session, _ = make_claim()
        session.start(offset(0, 0))
        assert session.start(offset(5, 5)) is None
        assert session.state is ClaimState.TRACKING

    def test_stop_keeps_path(self, make_claim, scheduler, recorder):
        session, source = make_claim()
        session.start(offset(0, 0))
        for s in walk([(0, 0), (10, 0), (20, 0)]):
            scheduler.advance_to(s.timestamp)
            source.emit(s)
        assert session.stop()
        assert session.state is ClaimState.IDLE
        assert len(session.path) == 3
        assert not source.is_updating
        assert scheduler.pending_count == 0
        assert not session.stop()
        assert recorder.of_type(SessionStateChanged)[-1].reason == "stopped"

    def test_reset_clears(self, make_claim, scheduler):
        session, source = make_claim(samples=walk(SQUARE_LOOP))
        session.start(offset(0, 0))
        replay(source, scheduler)
        session.reset()
        assert session.state is ClaimState.IDLE
        assert session.path == ()
        assert session.validation is None
        assert session.warning_level is WarningLevel.SAFE

    def test_samples_ignored_when_idle(self, make_claim):
        session, _ = make_claim()
        assert session.handle_location(sample(0, 0, T0)) is None

    def test_invalid_closed_path_cannot_upload(self, make_claim, scheduler, recorder):
        session, source = make_claim(samples=walk(BOW_TIE))
        session.start(offset(0, 0))
        replay(source, scheduler)
        assert session.state is ClaimState.CLOSED
        assert not session.validation.is_valid
        assert session.error == "Path crosses itself"
        assert recorder.of_type(SessionStateChanged)[-1].reason == "invalid"
        assert not session.upload()
        assert session.state is ClaimState.CLOSED

    def test_upload_ignored_unless_closed(self, make_claim):
        session, _ = make_claim()
        assert not session.upload()


# ----------------------------------------------------------------
# Permission
# ----------------------------------------------------------------

class TestClaimPermission:
    def test_denied(self, make_claim, recorder):
        session, source = make_claim(authorization=AuthorizationStatus.DENIED)
        assert session.start(offset(0, 0)) is None
        assert session.state is ClaimState.IDLE
        errors = recorder.of_type(SessionErrorRaised)
        assert len(errors) == 1 and not errors[0].recoverable
        assert not source.is_updating

    def test_requested_when_not_determined(self, make_claim):
        session, source = make_claim(authorization=AuthorizationStatus.NOT_DETERMINED)
        assert session.start(offset(0, 0)) is not None
        assert source.permission_requests == 1
        assert session.state is ClaimState.TRACKING

    def test_request_refused(self, make_claim):
        session, source = make_claim(authorization=AuthorizationStatus.NOT_DETERMINED,
                                     grant_on_request=False)
        assert session.start(offset(0, 0)) is None
        assert session.state is ClaimState.IDLE


# ----------------------------------------------------------------
# Collisions
# ----------------------------------------------------------------

class TestClaimCollisions:
    def test_start_inside_foreign_territory_blocked(self, make_claim, recorder):
        session, source = make_claim(territories=[square_territory(0, 0, 40, 40)])
        result = session.start(offset(20, 20))
        assert result.has_collision
        assert session.state is ClaimState.IDLE
        assert session.warning_level is WarningLevel.VIOLATION
        assert session.error == result.message
        assert not source.is_updating
        assert warning_changes(recorder) == [("safe", "violation")]
        assert states(recorder) == []

    def test_start_inside_own_territory_allowed(self, make_claim):
        own = square_territory(0, 0, 40, 40, owner="local-player", territory_id="mine")
        session, _ = make_claim(territories=[own])
        assert not session.start(offset(20, 20)).has_collision
        assert session.state is ClaimState.TRACKING

    def test_graduated_warnings_while_walking(self, make_claim, scheduler, recorder):
        rival = square_territory(90, 0, 130, 45)
        session, source = make_claim(territories=[rival], samples=walk(SQUARE_LOOP))
        session.start(offset(0, 0))
        replay(source, scheduler)
        assert warning_changes(recorder) == [
            ("safe", "caution"), ("caution", "warning"), ("warning", "caution"),
        ]
        assert session.state is ClaimState.CLOSED
        assert session.upload()

    def test_crossing_aborts(self, make_claim, scheduler, recorder):
        rival = square_territory(40, 5, 60, 10)
        session, source = make_claim(territories=[rival], samples=walk(SQUARE_LOOP))
        session.start(offset(0, 0))
        assert replay(source, scheduler) == 5
        assert session.state is ClaimState.ABORTED
        assert session.abort_reason == "collision"
        assert session.warning_level is WarningLevel.VIOLATION
        assert not source.is_updating
        assert scheduler.pending_count == 0
        assert not recorder.of_type(SessionErrorRaised)[-1].recoverable

    def test_periodic_recheck_uses_fresh_snapshot(self, make_claim, scheduler, recorder):
        session, source = make_claim()
        session.start(offset(0, 0))
        source.emit(sample(0, 0, T0))
        session.registry.replace([square_territory(10, 10, 30, 30)])
        assert session.warning_level is WarningLevel.SAFE

        scheduler.advance(10.0)
        assert session.warning_level is WarningLevel.DANGER
        assert warning_changes(recorder) == [("safe", "danger")]


# ----------------------------------------------------------------
# Speed
# ----------------------------------------------------------------

class TestClaimSpeed:
    def _over_speed(self, session, source, scheduler):
        session.start(offset(0, 0))
        source.emit(sample(0, 0, T0))
        scheduler.advance_to(T0 + 1)
        source.emit(sample(10, 0, T0 + 1, speed=CAR_SPEED))

    def test_countdown_expiry_aborts(self, make_claim, scheduler, recorder):
        session, source = make_claim()
        self._over_speed(session, source, scheduler)
        assert session.state is ClaimState.SPEED_WARNING
        assert recorder.of_type(SpeedViolationStarted)[0].countdown_s == 10.0

        scheduler.advance_to(T0 + 10.5)
        assert session.state is ClaimState.SPEED_WARNING
        scheduler.advance_to(T0 + 11)
        assert session.state is ClaimState.ABORTED
        assert session.abort_reason == "speedExceeded"
        assert recorder.of_type(SpeedViolationEnded)[0].outcome == "aborted"
        assert states(recorder) == ["tracking", "speedWarning", "aborted"]
        assert scheduler.pending_count == 0

    def test_recovery_cancels_countdown(self, make_claim, scheduler, recorder):
        session, source = make_claim()
        self._over_speed(session, source, scheduler)
        scheduler.advance_to(T0 + 3)
        source.emit(sample(12, 0, T0 + 3, speed=1.2))
        assert session.state is ClaimState.TRACKING
        assert recorder.of_type(SpeedViolationEnded)[0].outcome == "recovered"

        scheduler.advance(30.0)
        assert session.state is ClaimState.TRACKING
        assert len(session.path) == 2


# ----------------------------------------------------------------
# Errors
# ----------------------------------------------------------------

class TestClaimErrors:
    def test_location_error_is_recoverable(self, make_claim, recorder):
        session, source = make_claim()
        session.start(offset(0, 0))
        source.fail(LocationError("signal lost"))
        assert session.state is ClaimState.TRACKING
        assert session.error == "Location error: signal lost"
        assert recorder.of_type(SessionErrorRaised)[-1].recoverable

    def test_upload_failure_keeps_closed_for_retry(self, make_claim, scheduler, recorder):
        store = FailingUploadStore(failures=1)
        session, source = make_claim(samples=walk(SQUARE_LOOP), store=store)
        session.start(offset(0, 0))
        replay(source, scheduler)

        assert not session.upload()
        assert session.state is ClaimState.CLOSED
        assert session.error.startswith("Upload failed")
        assert session.validation.is_valid
        assert recorder.of_type(SessionErrorRaised)[-1].recoverable

        assert session.upload()
        assert session.state is ClaimState.UPLOADED
        assert session.error is None
        assert store.upload_calls == 2


# ----------------------------------------------------------------
# Owning context
# ----------------------------------------------------------------

class TestClaimDispatch:
    def test_samples_applied_on_owner_loop(self, make_claim):
        loop = EventLoop()
        session, source = make_claim(dispatch=loop.submit)
        session.start(offset(0, 0))
        source.emit(sample(0, 0, T0))
        assert len(session.path) == 0
        assert loop.run_pending() == 1
        assert len(session.path) == 1
