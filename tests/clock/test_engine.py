"""Level advancement engine tests.

순수 함수 전이: advance / pause / resume / adjust_time / set_level.
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings as hyp_settings, strategies as st

from pokerclock.clock import engine
from pokerclock.clock.models import (
    BlindLevel,
    ClockEventType,
    ClockPolicy,
    ClockSnapshot,
    ClockState,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _schedule(*durations):
    return tuple(BlindLevel(level=i, duration_seconds=d) for i, d in enumerate(durations, start=1))


def _snap(level=1, remaining=60, ago=0.0, paused=False, tid="t-1"):
    last = NOW - timedelta(seconds=ago)
    return ClockSnapshot(
        tournament_id=tid,
        current_level=level,
        time_remaining_seconds=remaining,
        is_paused=paused,
        last_updated=last,
        paused_at=last if paused else None,
    )


class TestAdvanceScenarios:
    """문서화된 시나리오."""

    def test_single_boundary_crossing(self):
        """[{1,60},{2,120}], 5초 남음, 30초 경과 → 레벨 2, 95초."""
        schedule = _schedule(60, 120)
        update = engine.advance(_snap(level=1, remaining=5, ago=30), schedule, NOW)

        assert update.changed is True
        assert update.snapshot.current_level == 2
        assert update.snapshot.time_remaining_seconds == 95
        assert update.snapshot.last_updated == NOW
        assert update.level_changes == 1
        change = update.events_of(ClockEventType.LEVEL_CHANGED)[0]
        assert change.data["from_level"] == 1
        assert change.data["level"] == 2
        assert change.data["manual"] is False
        assert not update.exhausted

    def test_multi_level_skip_exhausts_last_level(self):
        """60/60/60, 10초 남음, 200초 경과 → 레벨 3 에서 0으로 고정."""
        schedule = _schedule(60, 60, 60)
        update = engine.advance(_snap(level=1, remaining=10, ago=200), schedule, NOW)

        assert update.snapshot.current_level == 3
        assert update.snapshot.time_remaining_seconds == 0
        assert [e.data["level"] for e in update.events_of(ClockEventType.LEVEL_CHANGED)] == [2, 3]
        assert len(update.events_of(ClockEventType.SCHEDULE_EXHAUSTED)) == 1

    def test_multi_level_skip_exact_boundary(self):
        """10 + 60 = 70초 경과 → 정확히 레벨 3 시작."""
        schedule = _schedule(60, 60, 60)
        update = engine.advance(_snap(level=1, remaining=10, ago=70), schedule, NOW)

        assert update.snapshot.current_level == 3
        assert update.snapshot.time_remaining_seconds == 60
        assert update.level_changes == 2
        assert not update.exhausted

    def test_remaining_reaching_zero_moves_to_next_level(self):
        schedule = _schedule(60, 90)
        update = engine.advance(_snap(level=1, remaining=30, ago=30), schedule, NOW)

        assert update.snapshot.current_level == 2
        assert update.snapshot.time_remaining_seconds == 90

    def test_no_boundary_only_counts_down(self):
        schedule = _schedule(60, 60)
        update = engine.advance(_snap(level=1, remaining=50, ago=20), schedule, NOW)

        assert update.snapshot.current_level == 1
        assert update.snapshot.time_remaining_seconds == 30
        assert update.events == ()
        assert update.changed is True

    def test_default_duration_applies_to_missing_durations(self):
        schedule = _schedule(60, None, 0)
        policy = ClockPolicy(default_level_duration_seconds=1200)
        update = engine.advance(_snap(level=1, remaining=10, ago=20), schedule, NOW, policy)

        assert update.snapshot.current_level == 2
        assert update.snapshot.time_remaining_seconds == 1190
        assert update.events[0].data["duration_seconds"] == 1200


class TestAdvanceTimestamps:
    def test_sub_second_remainder_is_kept(self):
        """1.6초 경과 → 1초만 소비, last_updated 는 1초만 이동."""
        schedule = _schedule(60)
        snap = _snap(remaining=60, ago=1.6)
        update = engine.advance(snap, schedule, NOW)

        assert update.snapshot.time_remaining_seconds == 59
        assert update.snapshot.last_updated == snap.last_updated + timedelta(seconds=1)

        later = engine.advance(update.snapshot, schedule, NOW + timedelta(seconds=0.5))
        assert later.snapshot.time_remaining_seconds == 58

    def test_future_last_updated_is_noop(self):
        """시계 역행 (now < last_updated) → 변화 없음."""
        snap = _snap(remaining=30, ago=-15)
        update = engine.advance(snap, _schedule(60), NOW)

        assert update.changed is False
        assert update.snapshot == snap

    def test_manual_command_never_moves_timestamp_backwards(self):
        snap = _snap(remaining=30, ago=-15)
        update = engine.adjust_time(snap, _schedule(60), 45, NOW)

        assert update.snapshot.last_updated == snap.last_updated
        assert update.snapshot.time_remaining_seconds == 45


class TestEndOfSchedule:
    def test_clamps_at_last_level(self):
        schedule = _schedule(60, 60)
        update = engine.advance(_snap(level=2, remaining=5, ago=100), schedule, NOW)

        assert update.snapshot.current_level == 2
        assert update.snapshot.time_remaining_seconds == 0
        assert update.exhausted
        assert engine.clock_state(update.snapshot, schedule) == ClockState.ENDED

    def test_exhausted_emitted_once(self):
        schedule = _schedule(60, 60)
        first = engine.advance(_snap(level=2, remaining=5, ago=100), schedule, NOW)
        second = engine.advance(first.snapshot, schedule, NOW + timedelta(seconds=30))

        assert first.exhausted
        assert second.changed is False
        assert second.events == ()

    def test_empty_schedule_clamps_to_zero(self):
        update = engine.advance(_snap(level=1, remaining=40, ago=5), (), NOW)

        assert update.snapshot.time_remaining_seconds == 0
        assert update.snapshot.current_level == 1
        assert update.exhausted

    def test_level_past_schedule_clamps_to_zero(self):
        update = engine.advance(_snap(level=7, remaining=40, ago=5), _schedule(60, 60), NOW)

        assert update.snapshot.current_level == 7
        assert update.snapshot.time_remaining_seconds == 0

    def test_clock_state_running_and_paused(self):
        schedule = _schedule(60, 60)
        assert engine.clock_state(_snap(remaining=10), schedule) == ClockState.RUNNING
        assert engine.clock_state(_snap(remaining=10, paused=True), schedule) == ClockState.PAUSED
        # 종료가 일시정지보다 우선
        assert engine.clock_state(_snap(level=2, remaining=0, paused=True), schedule) == ClockState.ENDED


class TestPauseResume:
    def test_paused_clock_does_not_advance(self):
        snap = _snap(remaining=30, ago=500, paused=True)
        update = engine.advance(snap, _schedule(60, 60), NOW)

        assert update.changed is False
        assert update.snapshot.time_remaining_seconds == 30

    def test_pause_reconciles_first(self):
        schedule = _schedule(60, 120)
        update = engine.pause(_snap(level=1, remaining=5, ago=30), schedule, NOW)

        assert update.snapshot.is_paused is True
        assert update.snapshot.current_level == 2
        assert update.snapshot.time_remaining_seconds == 95
        assert update.snapshot.paused_at == NOW
        types = [e.event_type for e in update.events]
        assert types == [ClockEventType.LEVEL_CHANGED, ClockEventType.PAUSED]

    def test_pause_when_already_paused_is_noop(self):
        snap = _snap(remaining=30, paused=True)
        assert engine.pause(snap, _schedule(60), NOW).changed is False

    def test_resume_when_running_is_noop(self):
        snap = _snap(remaining=30)
        assert engine.resume(snap, _schedule(60), NOW).changed is False

    def test_pause_resume_gap_consumes_nothing(self):
        """60초 일시정지 동안 시간이 흐르지 않음."""
        schedule = _schedule(300)
        start = _snap(remaining=200, ago=0)

        paused = engine.pause(start, schedule, NOW).snapshot
        resumed_at = NOW + timedelta(seconds=60)
        resumed = engine.resume(paused, schedule, resumed_at)

        assert resumed.snapshot.time_remaining_seconds == 200
        assert resumed.snapshot.total_pause_time_seconds == 60
        assert resumed.snapshot.last_updated == resumed_at
        assert resumed.events[0].data["paused_seconds"] == 60

        after = engine.advance(resumed.snapshot, schedule, resumed_at + timedelta(seconds=10))
        assert after.snapshot.time_remaining_seconds == 190


class TestManualCommands:
    def test_adjust_time_clamps_negative(self):
        update = engine.adjust_time(_snap(remaining=30), _schedule(60, 60), -20, NOW)

        assert update.snapshot.time_remaining_seconds == 0
        assert update.events[0].event_type == ClockEventType.TIME_ADJUSTED

    def test_adjust_time_to_zero_on_last_level_exhausts(self):
        update = engine.adjust_time(_snap(level=2, remaining=30), _schedule(60, 60), 0, NOW)
        assert update.exhausted

    def test_set_level_uses_full_duration(self):
        schedule = _schedule(60, 120, 180)
        update = engine.set_level(_snap(remaining=10), schedule, 3, NOW)

        assert update.snapshot.current_level == 3
        assert update.snapshot.time_remaining_seconds == 180
        change = update.events_of(ClockEventType.LEVEL_CHANGED)[0]
        assert change.data["manual"] is True
        assert change.data["from_level"] == 1

    def test_set_level_clamps_below_one(self):
        update = engine.set_level(_snap(level=2, remaining=10), _schedule(60, 60), -3, NOW)
        assert update.snapshot.current_level == 1
        assert update.snapshot.time_remaining_seconds == 60

    def test_set_level_past_schedule_is_zero(self):
        update = engine.set_level(_snap(remaining=10), _schedule(60, 60), 9, NOW)

        assert update.snapshot.current_level == 9
        assert update.snapshot.time_remaining_seconds == 0

    def test_set_level_keeps_pause_state(self):
        update = engine.set_level(_snap(remaining=10, paused=True), _schedule(60, 60), 2, NOW)
        assert update.snapshot.is_paused is True

    def test_initialize_clock(self):
        update = engine.initialize_clock("t-9", _schedule(90, 60), NOW)

        assert update.snapshot.current_level == 1
        assert update.snapshot.time_remaining_seconds == 90
        assert update.snapshot.is_paused is False
        assert update.events[0].event_type == ClockEventType.INITIALIZED

    def test_initialize_clock_paused_with_empty_schedule(self):
        update = engine.initialize_clock("t-9", (), NOW, start_paused=True)

        assert update.snapshot.time_remaining_seconds == 0
        assert update.snapshot.paused_at == NOW


class TestTogglePause:
    def test_toggle_pauses_then_resumes(self):
        schedule = _schedule(60, 60)
        paused = engine.toggle_pause(_snap(remaining=60, ago=10), schedule, NOW)

        assert paused.snapshot.is_paused is True
        assert paused.snapshot.time_remaining_seconds == 50
        assert paused.events_of(ClockEventType.PAUSED)

        resumed = engine.toggle_pause(paused.snapshot, schedule, NOW + timedelta(seconds=30))

        assert resumed.snapshot.is_paused is False
        assert resumed.snapshot.time_remaining_seconds == 50
        assert resumed.snapshot.total_pause_time_seconds == 30


class TestPartialUpdate:
    def test_level_change_starts_paused_clock(self):
        update = engine.update_clock(
            _snap(remaining=10, paused=True), _schedule(60, 120), NOW, current_level=2
        )

        assert update.snapshot.current_level == 2
        assert update.snapshot.time_remaining_seconds == 120
        assert update.snapshot.is_paused is False
        types = [e.event_type for e in update.events]
        assert types == [ClockEventType.LEVEL_CHANGED, ClockEventType.RESUMED]

    def test_time_change_on_running_clock(self):
        update = engine.update_clock(_snap(remaining=10), _schedule(60, 60), NOW, time_remaining_seconds=45)

        assert update.snapshot.time_remaining_seconds == 45
        assert update.snapshot.is_paused is False
        assert [e.event_type for e in update.events] == [ClockEventType.TIME_ADJUSTED]

    def test_pause_flag_ignored_when_time_is_set(self):
        update = engine.update_clock(
            _snap(remaining=10, paused=True),
            _schedule(60, 60),
            NOW,
            time_remaining_seconds=30,
            is_paused=True,
        )
        assert update.snapshot.is_paused is False

    def test_pause_flag_alone(self):
        update = engine.update_clock(_snap(remaining=60, ago=5), _schedule(60, 60), NOW, is_paused=True)

        assert update.snapshot.is_paused is True
        assert update.snapshot.time_remaining_seconds == 55

    def test_empty_update_is_noop(self):
        snapshot = _snap(remaining=60)
        update = engine.update_clock(snapshot, _schedule(60, 60), NOW)

        assert update.changed is False
        assert update.snapshot == snapshot

    def test_exhaustion_judged_on_final_state(self):
        schedule = _schedule(60, 60)

        revived = engine.update_clock(
            _snap(remaining=30), schedule, NOW, current_level=9, time_remaining_seconds=40
        )
        assert revived.snapshot.current_level == 9
        assert revived.snapshot.time_remaining_seconds == 40
        assert not revived.exhausted

        ended = engine.update_clock(_snap(remaining=30), schedule, NOW, current_level=2, time_remaining_seconds=0)
        assert ended.exhausted
        assert len(ended.events_of(ClockEventType.SCHEDULE_EXHAUSTED)) == 1


# =============================================================================
# Property tests
# =============================================================================

durations = st.lists(st.one_of(st.none(), st.integers(min_value=-5, max_value=400)), min_size=0, max_size=6)
snapshots = st.builds(
    lambda level, remaining, ago, paused: _snap(level=level, remaining=remaining, ago=ago, paused=paused),
    level=st.integers(min_value=1, max_value=8),
    remaining=st.integers(min_value=0, max_value=600),
    ago=st.floats(min_value=-30, max_value=5000, allow_nan=False, allow_infinity=False),
    paused=st.booleans(),
)


@hyp_settings(max_examples=200, deadline=None)
@given(snapshot=snapshots, durs=durations)
def test_advance_is_idempotent(snapshot, durs):
    schedule = _schedule(*durs)
    first = engine.advance(snapshot, schedule, NOW)
    second = engine.advance(first.snapshot, schedule, NOW)

    assert second.snapshot == first.snapshot
    assert second.changed is False
    assert second.events == ()


@hyp_settings(max_examples=200, deadline=None)
@given(
    snapshot=snapshots,
    durs=durations,
    new_seconds=st.integers(min_value=-1000, max_value=1000),
    new_level=st.integers(min_value=-5, max_value=10),
)
def test_remaining_never_negative(snapshot, durs, new_seconds, new_level):
    schedule = _schedule(*durs)
    for update in (
        engine.advance(snapshot, schedule, NOW),
        engine.adjust_time(snapshot, schedule, new_seconds, NOW),
        engine.set_level(snapshot, schedule, new_level, NOW),
        engine.pause(snapshot, schedule, NOW),
    ):
        assert update.snapshot.time_remaining_seconds >= 0
        assert update.snapshot.current_level >= 1
        assert update.snapshot.last_updated >= snapshot.last_updated


@hyp_settings(max_examples=100, deadline=None)
@given(
    remaining=st.integers(min_value=0, max_value=600),
    elapsed=st.integers(min_value=0, max_value=10_000),
    durs=durations,
)
def test_pause_freezes_time(remaining, elapsed, durs):
    snapshot = _snap(remaining=remaining, ago=elapsed, paused=True)
    update = engine.advance(snapshot, _schedule(*durs), NOW)

    assert update.snapshot.time_remaining_seconds == remaining
    assert update.changed is False


@hyp_settings(max_examples=100, deadline=None)
@given(
    remaining=st.integers(min_value=1, max_value=300),
    elapsed=st.integers(min_value=0, max_value=2000),
    durs=st.lists(st.integers(min_value=1, max_value=300), min_size=1, max_size=5),
)
def test_total_time_is_conserved_before_exhaustion(remaining, elapsed, durs):
    """레벨 경계를 넘어도 소비된 시간의 합은 경과 시간과 같음."""
    schedule = _schedule(*durs)
    snapshot = _snap(level=1, remaining=remaining, ago=elapsed)
    update = engine.advance(snapshot, schedule, NOW)

    if update.exhausted:
        return
    consumed = remaining - update.snapshot.time_remaining_seconds
    for level in range(2, update.snapshot.current_level + 1):
        consumed += durs[level - 1]
    assert consumed == elapsed


@pytest.mark.parametrize("elapsed", [0, 1, 59, 60, 61, 119, 120, 121, 180, 500])
def test_boundary_arithmetic_is_exact(elapsed):
    schedule = _schedule(60, 60, 60)
    update = engine.advance(_snap(level=1, remaining=60, ago=elapsed), schedule, NOW)

    expected_level = min(3, 1 + elapsed // 60)
    expected_remaining = max(0, 60 * expected_level - elapsed)
    assert update.snapshot.current_level == expected_level
    assert update.snapshot.time_remaining_seconds == expected_remaining
