"""Tests for session, settings and goal persistence."""

from datetime import date, datetime

import practicelog.config as config

MINUTE = 60 * 1000


def _end_time(year, month, day, hour=12):
    return datetime(year, month, day, hour, 0).timestamp()


class TestSessions:
    def test_save_and_get(self, db):
        saved = db.save_session(30 * MINUTE, 20 * MINUTE, end_time=_end_time(2025, 3, 5, 15))

        loaded = db.get_session(saved.id)
        assert loaded.total_time_millis == 30 * MINUTE
        assert loaded.practice_time_millis == 20 * MINUTE
        assert loaded.date == datetime(2025, 3, 5, 14, 30)

    def test_negative_times_clamped(self, db):
        saved = db.save_session(-5, -10)
        assert saved.total_time_millis == 0
        assert saved.practice_time_millis == 0

    def test_recent_sessions_newest_first(self, db):
        first = db.save_session(MINUTE, MINUTE, end_time=_end_time(2025, 3, 1))
        second = db.save_session(MINUTE, MINUTE, end_time=_end_time(2025, 3, 2))
        third = db.save_session(MINUTE, MINUTE, end_time=_end_time(2025, 3, 3))

        recent = db.get_recent_sessions(limit=2)
        assert [s.id for s in recent] == [third.id, second.id]
        assert first.id not in [s.id for s in recent]

    def test_delete_session(self, db):
        saved = db.save_session(MINUTE, MINUTE)

        assert db.delete_session(saved.id) is True
        assert db.get_session(saved.id) is None

    def test_delete_unknown_session_is_noop(self, db):
        db.save_session(MINUTE, MINUTE)
        assert db.delete_session(9999) is False
        assert len(db.get_recent_sessions()) == 1

    def test_clear_sessions(self, db):
        for _ in range(3):
            db.save_session(MINUTE, MINUTE)
        assert db.clear_sessions() == 3
        assert db.get_recent_sessions() == []

    def test_targeted_goals_saved_with_session(self, db):
        scales = db.add_goal("Two-octave scales at 120 bpm")
        etude = db.add_goal("Memorize etude op. 10")

        saved = db.save_session(MINUTE, MINUTE, targeted_goal_ids=[etude, scales, 9999])

        assert saved.targeted_goal_ids == [scales, etude]

    def test_deleting_session_removes_goal_links(self, db):
        goal = db.add_goal("Sight-reading")
        saved = db.save_session(MINUTE, MINUTE, targeted_goal_ids=[goal])

        db.delete_session(saved.id)
        count = db.conn.execute('SELECT COUNT(*) FROM session_goals').fetchone()[0]
        assert count == 0
        assert len(db.get_goals()) == 1


class TestCalendar:
    def _seed(self, db):
        db.save_session(40 * MINUTE, 30 * MINUTE, end_time=_end_time(2025, 3, 5, 10))
        db.save_session(20 * MINUTE, 15 * MINUTE, end_time=_end_time(2025, 3, 5, 18))
        db.save_session(60 * MINUTE, 45 * MINUTE, end_time=_end_time(2025, 3, 20))
        db.save_session(10 * MINUTE, 10 * MINUTE, end_time=_end_time(2025, 4, 1))

    def test_duration_for_date(self, db):
        self._seed(db)
        assert db.get_practice_duration_for_date(date(2025, 3, 5)) == 45 * MINUTE
        assert db.get_practice_duration_for_date(date(2025, 3, 6)) == 0

    def test_duration_for_month(self, db):
        self._seed(db)
        assert db.get_practice_duration_for_month(2025, 3) == 90 * MINUTE
        assert db.get_practice_duration_for_month(2025, 2) == 0

    def test_lifetime_duration(self, db):
        assert db.get_lifetime_practice_duration() == 0
        self._seed(db)
        assert db.get_lifetime_practice_duration() == 100 * MINUTE

    def test_practice_days_in_month(self, db):
        self._seed(db)
        assert db.get_practice_days_in_month(2025, 3) == {5: 45 * MINUTE, 20: 45 * MINUTE}

    def test_daily_summary(self, db):
        self._seed(db)
        summary = db.get_daily_summary(days=7, today=date(2025, 3, 7))

        assert summary == [{
            'session_date': "2025-03-05",
            'session_count': 2,
            'total_time_ms': 60 * MINUTE,
            'practice_time_ms': 45 * MINUTE,
        }]


class TestSettings:
    def test_defaults(self, db):
        assert db.get_settings() == {
            'grace_period_ms': config.GRACE_PERIOD_MS,
            'auto_end_threshold_ms': config.AUTO_END_THRESHOLD_MS,
            'goal_minutes': config.GOAL_MINUTES,
        }

    def test_set_and_get(self, db):
        assert db.set_grace_period_ms(5000) is True
        assert db.set_auto_end_threshold_ms(10 * MINUTE) is True
        assert db.set_goal_minutes(45) is True

        assert db.get_grace_period_ms() == 5000
        assert db.get_auto_end_threshold_ms() == 10 * MINUTE
        assert db.get_goal_minutes() == 45

    def test_invalid_values_rejected(self, db):
        db.set_grace_period_ms(5000)

        assert db.set_grace_period_ms(0) is False
        assert db.set_grace_period_ms(-1) is False
        assert db.set_auto_end_threshold_ms(0) is False
        assert db.set_goal_minutes(-1) is False
        assert db.get_grace_period_ms() == 5000

    def test_zero_goal_allowed(self, db):
        db.set_goal_minutes(30)
        assert db.set_goal_minutes(0) is True
        assert db.get_goal_minutes() == 0

    def test_reset_settings(self, db):
        db.set_grace_period_ms(5000)
        db.reset_settings()
        assert db.get_grace_period_ms() == config.GRACE_PERIOD_MS

    def test_settings_persist_across_connections(self, tmp_path):
        from practicelog.database import PracticeDatabase

        path = str(tmp_path / "persist.db")
        first = PracticeDatabase(path)
        first.set_goal_minutes(25)
        first.close()

        second = PracticeDatabase(path)
        try:
            assert second.get_goal_minutes() == 25
        finally:
            second.close()


class TestGoals:
    def test_add_and_list(self, db):
        goal_id = db.add_goal("  Clean shifts in position 3  ")

        goals = db.get_goals()
        assert len(goals) == 1
        assert goals[0]['id'] == goal_id
        assert goals[0]['description'] == "Clean shifts in position 3"
        assert goals[0]['achieved'] is False

    def test_blank_description_rejected(self, db):
        assert db.add_goal("   ") is None
        assert db.get_goals() == []

    def test_update_description(self, db):
        goal_id = db.add_goal("Trills")

        assert db.update_goal_description(goal_id, "Even trills at 100 bpm") is True
        assert db.get_goals()[0]['description'] == "Even trills at 100 bpm"
        assert db.update_goal_description(goal_id, "") is False
        assert db.update_goal_description(9999, "Missing") is False

    def test_toggle_achieved(self, db):
        done = db.add_goal("Scales")
        db.add_goal("Arpeggios")

        assert db.set_goal_achieved(done, True) is True
        outstanding = db.get_goals(outstanding_only=True)
        assert [g['description'] for g in outstanding] == ["Arpeggios"]
        assert db.get_goals()[0]['achieved_at'] is not None

        db.set_goal_achieved(done, False)
        assert len(db.get_goals(outstanding_only=True)) == 2
        assert db.get_goals()[0]['achieved_at'] is None

    def test_delete_goal(self, db):
        goal_id = db.add_goal("Vibrato")
        assert db.delete_goal(goal_id) is True
        assert db.delete_goal(goal_id) is False
        assert db.get_goals() == []
