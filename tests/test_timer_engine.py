"""Tests for the practice timer state machine."""

import random

from practicelog.clock import ManualClock
from practicelog.detection_state import DetectionStateHolder
from practicelog.timer_engine import GOAL_REACHED_MESSAGE, PracticeTimer, TimerState


class TestGracePeriod:
    def test_short_silence_keeps_run_active(self, timer, clock):
        t0 = clock.now()
        timer.update_timer_state(True, "Piano", 0.9)
        clock.set(t0 + 1000)
        timer.update_timer_state(True, "Piano", 0.9)

        # Silence ticks every 500ms, each gap since t0+1000 below 8000ms
        for t in range(t0 + 1500, t0 + 9000, 500):
            clock.set(t)
            timer.update_timer_state(False, "Silence", 0.9)
            assert timer.is_playing

        assert timer.state.accumulated_time_millis == 0

    def test_grace_expiry_counts_only_played_span(self, timer, clock, state_holder):
        t0 = clock.now()
        timer.update_timer_state(True, "Piano", 0.9)
        clock.set(t0 + 1000)
        timer.update_timer_state(True, "Piano", 0.9)

        clock.set(t0 + 5000)
        timer.update_timer_state(False, "Silence", 0.9)
        clock.set(t0 + 9000)
        timer.update_timer_state(False, "Silence", 0.9)

        assert not timer.is_playing
        assert timer.state.accumulated_time_millis == 1000
        assert state_holder.state.accumulated_time_millis == 1000
        assert state_holder.state.status_message == "Paused (Last sound: Silence)"

    def test_scenario_starting_at_time_zero(self, announcer):
        clock = ManualClock(0)
        holder = DetectionStateHolder(clock)
        timer = PracticeTimer(clock, holder, announcer, grace_period_ms=8000)

        timer.update_timer_state(True, "Piano", 0.9)
        clock.set(1000)
        timer.update_timer_state(True, "Piano", 0.9)
        clock.set(9000)
        timer.update_timer_state(False, "Silence", 0.9)

        assert not timer.is_playing
        assert timer.state.accumulated_time_millis == 1000

    def test_runs_accumulate(self, timer, clock):
        t0 = clock.now()
        timer.update_timer_state(True, "Piano", 0.9)
        clock.set(t0 + 3000)
        timer.update_timer_state(True, "Piano", 0.9)
        clock.set(t0 + 11000)
        timer.update_timer_state(False, "Silence", 0.9)

        clock.set(t0 + 20000)
        timer.update_timer_state(True, "Guitar", 0.8)
        clock.set(t0 + 22000)
        timer.update_timer_state(True, "Guitar", 0.8)
        clock.set(t0 + 30000)
        timer.update_timer_state(False, "Speech", 0.7)

        assert timer.state.accumulated_time_millis == 3000 + 2000

    def test_accumulated_time_never_decreases(self, timer, clock):
        rng = random.Random(1234)
        previous = 0
        for _ in range(500):
            clock.advance(rng.choice([100, 500, 500, 1000, 4000, 9000, -2000]))
            timer.update_timer_state(rng.random() < 0.5, "Piano", 0.9)
            accumulated = timer.state.accumulated_time_millis
            assert accumulated >= previous
            previous = accumulated


class TestStatusMessages:
    def test_music_publishes_label(self, timer, state_holder):
        timer.update_timer_state(True, "Violin", 0.77)
        assert state_holder.state.status_message == "Practicing: Violin"

    def test_grace_publishes_practicing(self, timer, clock, state_holder):
        timer.update_timer_state(True, "Violin", 0.77)
        clock.advance(2000)
        timer.update_timer_state(False, "Silence", 0.9)
        assert state_holder.state.status_message == "Practicing"

    def test_idle_republishes_without_changing_time(self, timer, state_holder):
        timer.set_state_for_test(False, 0, 4200)
        timer.update_timer_state(False, "Speech", 0.6)

        assert state_holder.state.status_message == ""
        assert state_holder.state.accumulated_time_millis == 4200
        assert timer.state.accumulated_time_millis == 4200


class TestUiTimer:
    def test_live_time_while_active(self, timer, clock, state_holder):
        t0 = clock.now()
        timer.set_state_for_test(True, t0, 20000, last_music_detection_time_millis=t0)
        clock.set(t0 + 5000)

        assert timer.update_ui_timer() == 25000
        assert state_holder.state.accumulated_time_millis == 25000
        # Display only: the timer's own record is untouched
        assert timer.state.accumulated_time_millis == 20000
        assert timer.is_playing

    def test_live_time_while_idle(self, timer, clock):
        timer.set_state_for_test(False, 0, 20000)
        clock.advance(5000)
        assert timer.update_ui_timer() == 20000

    def test_publishes_session_span(self, timer, clock, state_holder):
        clock.advance(65000)
        timer.update_ui_timer()
        assert state_holder.state.total_session_time_millis == 65000
        assert state_holder.state.formatted_session_time == "00:01:05"


class TestFinalTime:
    def test_folds_in_progress_run(self, timer, clock):
        t0 = clock.now()
        timer.set_state_for_test(True, t0, 0, last_music_detection_time_millis=t0)
        clock.set(t0 + 10000)

        assert timer.calculate_final_time() == 10000
        assert not timer.is_playing
        assert timer.state.accumulated_time_millis == 10000

    def test_idle_returns_accumulated(self, timer):
        timer.set_state_for_test(False, 0, 4321)
        assert timer.calculate_final_time() == 4321


class TestReset:
    def test_reset_zeroes_everything(self, timer, clock):
        t0 = clock.now()
        timer.set_state_for_test(True, t0, 9999, last_music_detection_time_millis=t0,
                                 last_announced_milestone=2)
        timer.reset_timer_state()

        assert timer.state == TimerState()
        assert timer.state.last_announced_milestone == 0
        assert not timer.auto_end_triggered


class TestClockRegression:
    def test_regression_never_decreases_accumulated(self, timer, clock):
        t0 = clock.now()
        timer.set_state_for_test(True, t0, 5000, last_music_detection_time_millis=t0)

        clock.set(t0 - 3000)
        timer.update_timer_state(True, "Piano", 0.9)
        clock.set(t0 + 6000)
        timer.update_timer_state(False, "Silence", 0.9)

        assert not timer.is_playing
        assert timer.state.accumulated_time_millis == 5000

    def test_final_time_clamps_negative_span(self, timer, clock):
        t0 = clock.now()
        timer.set_state_for_test(True, t0, 7000, last_music_detection_time_millis=t0)
        clock.set(t0 - 1000)

        assert timer.update_ui_timer() == 7000
        assert timer.calculate_final_time() == 7000


class TestMilestones:
    def test_first_quarter_announced_once(self, timer, announcer):
        timer.check_progress_milestones(300_000, 1_200_000, 20)

        assert announcer.messages == ["Good progress! 15 minutes left."]
        assert timer.state.last_announced_milestone == 1

        timer.check_progress_milestones(360_000, 1_200_000, 20)
        assert announcer.messages == ["Good progress! 15 minutes left."]

    def test_each_quarter(self, timer, announcer):
        for elapsed in (300_000, 600_000, 900_000):
            timer.check_progress_milestones(elapsed, 1_200_000, 20)

        assert announcer.messages == [
            "Good progress! 15 minutes left.",
            "Good progress! 10 minutes left.",
            "Good progress! 5 minutes left.",
        ]

    def test_skipped_quarter_is_not_replayed(self, timer, announcer):
        timer.check_progress_milestones(700_000, 1_200_000, 20)
        timer.check_progress_milestones(320_000, 1_200_000, 20)

        assert announcer.messages == ["Good progress! 10 minutes left."]
        assert timer.state.last_announced_milestone == 2

    def test_no_goal_is_noop(self, timer, announcer):
        timer.check_progress_milestones(300_000, 0, 0)
        assert announcer.messages == []
        assert timer.state.last_announced_milestone == 0

    def test_quarter_zero_and_four_not_announced(self, timer, announcer):
        timer.check_progress_milestones(100_000, 1_200_000, 20)
        timer.check_progress_milestones(1_200_000, 1_200_000, 20)
        assert announcer.messages == []

    def test_ui_timer_drives_milestones(self, clock, state_holder, announcer):
        timer = PracticeTimer(clock, state_holder, announcer, goal_minutes=20)
        t0 = clock.now()
        timer.set_state_for_test(True, t0, 0, last_music_detection_time_millis=t0)

        clock.set(t0 + 300_000)
        timer.update_ui_timer()
        timer.update_ui_timer()

        assert announcer.messages == ["Good progress! 15 minutes left."]


class TestGoalReached:
    def test_goal_announced_once(self, clock, state_holder, announcer):
        timer = PracticeTimer(clock, state_holder, announcer, goal_minutes=1)
        t0 = clock.now()
        timer.set_state_for_test(True, t0, 0, last_music_detection_time_millis=t0)

        clock.set(t0 + 59_999)
        timer.update_ui_timer()
        clock.set(t0 + 60_000)
        timer.update_ui_timer()
        clock.set(t0 + 90_000)
        timer.update_ui_timer()

        assert announcer.messages[-1] == GOAL_REACHED_MESSAGE
        assert announcer.messages.count(GOAL_REACHED_MESSAGE) == 1
        assert timer.state.last_announced_milestone == 4

    def test_no_goal_never_reached(self, timer):
        assert timer.check_goal_reached(10_000_000) is False

    def test_announcer_failure_does_not_propagate(self, clock, state_holder):
        class BrokenAnnouncer:
            def announce(self, text):
                raise RuntimeError("no audio device")

        timer = PracticeTimer(clock, state_holder, BrokenAnnouncer(), goal_minutes=1)
        assert timer.check_goal_reached(60_000) is True


class TestAutoEnd:
    def _timer(self, clock, state_holder, calls):
        return PracticeTimer(clock, state_holder, auto_end_threshold_ms=60_000,
                             on_auto_end=lambda: calls.append(clock.now()))

    def test_fires_once_after_threshold(self, clock, state_holder):
        calls = []
        timer = self._timer(clock, state_holder, calls)
        t0 = clock.now()

        clock.set(t0 + 59_999)
        timer.update_timer_state(False, "Silence", 0.9)
        assert calls == []

        clock.set(t0 + 60_000)
        timer.update_timer_state(False, "Silence", 0.9)
        clock.set(t0 + 61_000)
        timer.update_timer_state(False, "Silence", 0.9)

        assert calls == [t0 + 60_000]
        assert timer.auto_end_triggered

    def test_idle_measured_from_last_detection(self, clock, state_holder):
        calls = []
        timer = self._timer(clock, state_holder, calls)
        t0 = clock.now()

        clock.set(t0 + 50_000)
        timer.update_timer_state(True, "Piano", 0.9)
        clock.set(t0 + 58_000)
        timer.update_timer_state(False, "Silence", 0.9)
        clock.set(t0 + 100_000)
        timer.update_timer_state(False, "Silence", 0.9)
        assert calls == []

        clock.set(t0 + 110_000)
        timer.update_timer_state(False, "Silence", 0.9)
        assert len(calls) == 1

    def test_never_fires_while_playing(self, clock, state_holder):
        calls = []
        timer = self._timer(clock, state_holder, calls)
        for _ in range(200):
            clock.advance(1000)
            timer.update_timer_state(True, "Piano", 0.9)
        assert calls == []
