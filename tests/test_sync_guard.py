"""Tests for the sync admission guard."""
from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FakeClock
from src.models.sync import SyncTrigger
from src.services.sync_guard import SYNC_IN_PROGRESS, SyncCoordinator, format_wait


@pytest.fixture
def coordinator(clock: FakeClock) -> SyncCoordinator:
    return SyncCoordinator(min_auto_interval=timedelta(hours=6), clock=clock)


class TestValidateSyncAttempt:
    def test_first_attempt_is_allowed_for_every_trigger(self, coordinator):
        for trigger in SyncTrigger:
            assert coordinator.validate_sync_attempt(trigger).allowed

    def test_in_progress_blocks_every_trigger(self, coordinator):
        coordinator.mark_sync_started(SyncTrigger.MANUAL)
        for trigger in SyncTrigger:
            decision = coordinator.validate_sync_attempt(trigger)
            assert not decision.allowed
            assert decision.reason == SYNC_IN_PROGRESS

    def test_daily_auto_blocked_inside_interval(self, coordinator, clock):
        coordinator.mark_sync_started(SyncTrigger.MANUAL)
        coordinator.mark_sync_completed(SyncTrigger.MANUAL, success=True)
        clock.advance(hours=2)

        decision = coordinator.validate_sync_attempt(SyncTrigger.DAILY_AUTO)
        assert not decision.allowed
        assert decision.reason == "too_soon: next auto-sync allowed in 4h 0m"
        assert decision.retry_after == timedelta(hours=4)

    def test_daily_auto_allowed_after_interval(self, coordinator, clock):
        coordinator.mark_sync_started(SyncTrigger.DAILY_AUTO)
        coordinator.mark_sync_completed(SyncTrigger.DAILY_AUTO, success=True)
        clock.advance(hours=6)
        assert coordinator.validate_sync_attempt(SyncTrigger.DAILY_AUTO).allowed

    def test_failed_attempt_also_counts_for_timing(self, coordinator, clock):
        """Uma tentativa que falhou ainda conta: o auto-sync não martela o servidor."""
        coordinator.mark_sync_started(SyncTrigger.DAILY_AUTO)
        coordinator.mark_sync_completed(SyncTrigger.DAILY_AUTO, success=False)
        clock.advance(minutes=30)
        assert not coordinator.validate_sync_attempt(SyncTrigger.DAILY_AUTO).allowed

    def test_manual_and_recovery_ignore_timing(self, coordinator, clock):
        coordinator.mark_sync_started(SyncTrigger.MANUAL)
        coordinator.mark_sync_completed(SyncTrigger.MANUAL, success=True)
        clock.advance(seconds=1)
        for trigger in (SyncTrigger.MANUAL, SyncTrigger.RECOVERY_UPLOAD, SyncTrigger.RECOVERY_DOWNLOAD):
            assert coordinator.validate_sync_attempt(trigger).allowed

    def test_persisted_last_sync_seeds_timing(self, clock):
        coordinator = SyncCoordinator(
            min_auto_interval=timedelta(hours=6),
            clock=clock,
            last_sync_at=clock.now - timedelta(hours=1),
        )
        assert not coordinator.validate_sync_attempt(SyncTrigger.DAILY_AUTO).allowed

    def test_naive_seed_is_treated_as_utc(self, clock):
        coordinator = SyncCoordinator(
            min_auto_interval=timedelta(hours=6),
            clock=clock,
            last_sync_at=(clock.now - timedelta(hours=7)).replace(tzinfo=None),
        )
        assert coordinator.validate_sync_attempt(SyncTrigger.DAILY_AUTO).allowed


class TestAdmit:
    def test_admit_marks_and_releases(self, coordinator):
        with coordinator.admit(SyncTrigger.MANUAL) as ticket:
            assert ticket.admitted
            assert coordinator.is_in_progress
            assert coordinator.current_trigger == SyncTrigger.MANUAL
            ticket.success = True
        assert not coordinator.is_in_progress
        assert coordinator.current_trigger is None

    def test_nested_admission_is_blocked(self, coordinator):
        with coordinator.admit(SyncTrigger.MANUAL) as outer:
            with coordinator.admit(SyncTrigger.RECOVERY_UPLOAD) as inner:
                assert outer.admitted
                assert not inner.admitted
                assert inner.decision.reason == SYNC_IN_PROGRESS
            # O bloqueado não pode liberar o sync que está rodando
            assert coordinator.is_in_progress
        assert not coordinator.is_in_progress

    def test_release_after_exception(self, coordinator):
        with pytest.raises(RuntimeError):
            with coordinator.admit(SyncTrigger.MANUAL):
                raise RuntimeError("mid-sync crash")

        assert not coordinator.is_in_progress
        with coordinator.admit(SyncTrigger.MANUAL) as ticket:
            assert ticket.admitted

    def test_reset_forgets_history(self, coordinator):
        with coordinator.admit(SyncTrigger.DAILY_AUTO) as ticket:
            ticket.success = True
        assert not coordinator.validate_sync_attempt(SyncTrigger.DAILY_AUTO).allowed

        coordinator.reset()
        assert coordinator.validate_sync_attempt(SyncTrigger.DAILY_AUTO).allowed


class TestFormatWait:
    def test_hours_and_minutes(self):
        assert format_wait(timedelta(hours=3, minutes=15)) == "3h 15m"

    def test_minutes_only(self):
        assert format_wait(timedelta(minutes=42)) == "42m"

    def test_rounds_up_to_one_minute(self):
        assert format_wait(timedelta(seconds=5)) == "1m"
