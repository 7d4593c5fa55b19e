"""
Database module for storing practice sessions, settings and technical goals.
"""
import sqlite3
import time
from datetime import date, datetime, timedelta
from typing import Optional, List, Dict
import logging

import practicelog.config as config
from practicelog.session import PracticeSession

logger = logging.getLogger(__name__)

SETTING_GRACE_PERIOD_MS = 'grace_period_ms'
SETTING_AUTO_END_THRESHOLD_MS = 'auto_end_threshold_ms'
SETTING_GOAL_MINUTES = 'goal_minutes'

SETTING_DEFAULTS = {
    SETTING_GRACE_PERIOD_MS: config.GRACE_PERIOD_MS,
    SETTING_AUTO_END_THRESHOLD_MS: config.AUTO_END_THRESHOLD_MS,
    SETTING_GOAL_MINUTES: config.GOAL_MINUTES,
}


class PracticeDatabase:
    """Manages SQLite database for practice session tracking."""

    def __init__(self, db_path: str = config.DATABASE_PATH):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._init_database()

    def _init_database(self):
        """Initialize database connection and create tables if needed."""
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute('PRAGMA foreign_keys = ON')

        cursor = self.conn.cursor()

        # Create practice sessions table
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS practice_sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                start_timestamp INTEGER NOT NULL,
                end_timestamp INTEGER NOT NULL,
                total_time_ms INTEGER NOT NULL,
                practice_time_ms INTEGER NOT NULL,
                session_date TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Create settings table
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value INTEGER NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Create technical goals table
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS technical_goals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                description TEXT NOT NULL,
                achieved INTEGER NOT NULL DEFAULT 0,
                achieved_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Goals targeted during a session
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS session_goals (
                session_id INTEGER NOT NULL REFERENCES practice_sessions(id) ON DELETE CASCADE,
                goal_id INTEGER NOT NULL REFERENCES technical_goals(id) ON DELETE CASCADE,
                PRIMARY KEY (session_id, goal_id)
            )
        ''')

        # Create indexes for common queries
        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_session_date
            ON practice_sessions(session_date)
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_start_time
            ON practice_sessions(start_timestamp)
        ''')

        self.conn.commit()
        logger.info(f"Database initialized at {self.db_path}")

    # -- Sessions --

    def save_session(self, total_time_ms: int, practice_time_ms: int,
                     end_time: Optional[float] = None,
                     targeted_goal_ids: Optional[List[int]] = None) -> PracticeSession:
        """
        Save a completed practice session.

        Args:
            total_time_ms: Session span (start to stop) in milliseconds
            practice_time_ms: Detected practice time in milliseconds
            end_time: Unix timestamp of session end (defaults to now)
            targeted_goal_ids: Technical goals worked on during the session

        Returns:
            The stored session
        """
        total_time_ms = max(0, int(total_time_ms))
        practice_time_ms = max(0, int(practice_time_ms))
        end_time = time.time() if end_time is None else end_time
        start_time = end_time - total_time_ms / 1000.0
        session_date = datetime.fromtimestamp(start_time).date()

        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO practice_sessions
            (start_timestamp, end_timestamp, total_time_ms, practice_time_ms, session_date)
            VALUES (?, ?, ?, ?, ?)
        ''', (int(start_time), int(end_time), total_time_ms, practice_time_ms,
              session_date.isoformat()))

        session_id = cursor.lastrowid
        for goal_id in targeted_goal_ids or []:
            # Goals deleted since the session started are skipped
            cursor.execute('''
                INSERT OR IGNORE INTO session_goals (session_id, goal_id)
                SELECT ?, id FROM technical_goals WHERE id = ?
            ''', (session_id, goal_id))

        self.conn.commit()

        logger.info(f"Saved session {session_id}: total {total_time_ms}ms, "
                    f"practice {practice_time_ms}ms")

        return self.get_session(session_id)

    def _session_goal_ids(self, session_id: int) -> List[int]:
        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT goal_id FROM session_goals WHERE session_id = ? ORDER BY goal_id
        ''', (session_id,))
        return [row['goal_id'] for row in cursor.fetchall()]

    def get_session(self, session_id: int) -> Optional[PracticeSession]:
        """
        Get one session by ID.

        Returns:
            The session, or None if not found
        """
        cursor = self.conn.cursor()
        cursor.execute('SELECT * FROM practice_sessions WHERE id = ?', (session_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return PracticeSession.from_row(row, self._session_goal_ids(session_id))

    def get_recent_sessions(self, limit: int = 10) -> List[PracticeSession]:
        """
        Get recent practice sessions, newest first.

        Args:
            limit: Maximum number of sessions to return
        """
        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT * FROM practice_sessions
            ORDER BY start_timestamp DESC, id DESC
            LIMIT ?
        ''', (limit,))

        return [PracticeSession.from_row(row, self._session_goal_ids(row['id']))
                for row in cursor.fetchall()]

    def delete_session(self, session_id: int) -> bool:
        """
        Delete a session.

        Returns:
            True if a session was deleted, False if the ID was unknown
        """
        cursor = self.conn.cursor()
        cursor.execute('DELETE FROM practice_sessions WHERE id = ?', (session_id,))
        self.conn.commit()

        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted session {session_id}")
        else:
            logger.info(f"Session {session_id} not found, nothing deleted")
        return deleted

    def clear_sessions(self) -> int:
        """Delete all sessions. Returns the number removed."""
        cursor = self.conn.cursor()
        cursor.execute('DELETE FROM practice_sessions')
        self.conn.commit()
        logger.info(f"Cleared {cursor.rowcount} sessions")
        return cursor.rowcount

    # -- Calendar queries --

    def get_practice_duration_for_date(self, day: date) -> int:
        """Total practice milliseconds for sessions that started on `day`."""
        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT COALESCE(SUM(practice_time_ms), 0) AS total
            FROM practice_sessions
            WHERE session_date = ?
        ''', (day.isoformat(),))
        return cursor.fetchone()['total']

    def get_practice_duration_for_month(self, year: int, month: int) -> int:
        """Total practice milliseconds for sessions in the given month."""
        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT COALESCE(SUM(practice_time_ms), 0) AS total
            FROM practice_sessions
            WHERE session_date LIKE ?
        ''', (f"{year:04d}-{month:02d}-%",))
        return cursor.fetchone()['total']

    def get_lifetime_practice_duration(self) -> int:
        """Total practice milliseconds across all sessions."""
        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT COALESCE(SUM(practice_time_ms), 0) AS total FROM practice_sessions
        ''')
        return cursor.fetchone()['total']

    def get_practice_days_in_month(self, year: int, month: int) -> Dict[int, int]:
        """
        Practice time per day of the month, for days with sessions.

        Returns:
            Dict mapping day number (1-31) to practice milliseconds
        """
        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT session_date, SUM(practice_time_ms) AS total
            FROM practice_sessions
            WHERE session_date LIKE ?
            GROUP BY session_date
            ORDER BY session_date
        ''', (f"{year:04d}-{month:02d}-%",))
        return {date.fromisoformat(row['session_date']).day: row['total']
                for row in cursor.fetchall()}

    def get_daily_summary(self, days: int = 7, today: Optional[date] = None) -> List[Dict]:
        """
        Get daily practice summary for the past N days.

        Args:
            days: Number of days to include (today counts as one)
            today: Reference date (defaults to the local date)

        Returns:
            List of daily summary dictionaries, newest first
        """
        today = today or date.today()
        first_day = today - timedelta(days=max(1, days) - 1)

        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT
                session_date,
                COUNT(*) as session_count,
                SUM(total_time_ms) as total_time_ms,
                SUM(practice_time_ms) as practice_time_ms
            FROM practice_sessions
            WHERE session_date >= ? AND session_date <= ?
            GROUP BY session_date
            ORDER BY session_date DESC
        ''', (first_day.isoformat(), today.isoformat()))

        return [dict(row) for row in cursor.fetchall()]

    # -- Settings --

    def _get_setting(self, key: str) -> int:
        cursor = self.conn.cursor()
        cursor.execute('SELECT value FROM settings WHERE key = ?', (key,))
        result = cursor.fetchone()
        return result['value'] if result else SETTING_DEFAULTS[key]

    def _set_setting(self, key: str, value: int):
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO settings (key, value)
            VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = ?,
                updated_at = CURRENT_TIMESTAMP
        ''', (key, int(value), int(value)))
        self.conn.commit()
        logger.info(f"Set {key} = {value}")

    def get_grace_period_ms(self) -> int:
        return self._get_setting(SETTING_GRACE_PERIOD_MS)

    def set_grace_period_ms(self, milliseconds: int) -> bool:
        """Set the grace period. Non-positive values are ignored."""
        if milliseconds is None or milliseconds <= 0:
            logger.warning(f"Attempted to set invalid grace period: {milliseconds} ms, ignoring")
            return False
        self._set_setting(SETTING_GRACE_PERIOD_MS, milliseconds)
        return True

    def get_auto_end_threshold_ms(self) -> int:
        return self._get_setting(SETTING_AUTO_END_THRESHOLD_MS)

    def set_auto_end_threshold_ms(self, milliseconds: int) -> bool:
        """Set the auto-end threshold. Non-positive values are ignored."""
        if milliseconds is None or milliseconds <= 0:
            logger.warning(f"Attempted to set invalid auto-end threshold: {milliseconds} ms, ignoring")
            return False
        self._set_setting(SETTING_AUTO_END_THRESHOLD_MS, milliseconds)
        return True

    def get_goal_minutes(self) -> int:
        return self._get_setting(SETTING_GOAL_MINUTES)

    def set_goal_minutes(self, minutes: int) -> bool:
        """Set the practice goal (0 disables it). Negative values are ignored."""
        if minutes is None or minutes < 0:
            logger.warning(f"Attempted to set invalid goal: {minutes} minutes, ignoring")
            return False
        self._set_setting(SETTING_GOAL_MINUTES, minutes)
        return True

    def get_settings(self) -> Dict[str, int]:
        return {key: self._get_setting(key) for key in SETTING_DEFAULTS}

    def reset_settings(self):
        """Restore all settings to their defaults."""
        cursor = self.conn.cursor()
        cursor.execute('DELETE FROM settings')
        self.conn.commit()
        logger.info("Settings reset to defaults")

    # -- Technical goals --

    def add_goal(self, description: str) -> Optional[int]:
        """
        Add a technical goal.

        Returns:
            Goal ID, or None if the description is blank
        """
        if not description or not description.strip():
            logger.warning("Attempted to create goal with empty description, ignoring")
            return None

        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO technical_goals (description) VALUES (?)
        ''', (description.strip(),))
        self.conn.commit()

        goal_id = cursor.lastrowid
        logger.info(f"Added goal {goal_id}: {description.strip()}")
        return goal_id

    def update_goal_description(self, goal_id: int, description: str) -> bool:
        if not description or not description.strip():
            logger.warning("Attempted to update goal with empty description, ignoring")
            return False

        cursor = self.conn.cursor()
        cursor.execute('''
            UPDATE technical_goals
            SET description = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        ''', (description.strip(), goal_id))
        self.conn.commit()
        return cursor.rowcount > 0

    def set_goal_achieved(self, goal_id: int, achieved: bool) -> bool:
        cursor = self.conn.cursor()
        cursor.execute('''
            UPDATE technical_goals
            SET achieved = ?,
                achieved_at = CASE WHEN ? THEN CURRENT_TIMESTAMP ELSE NULL END,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        ''', (int(achieved), int(achieved), goal_id))
        self.conn.commit()

        logger.info(f"Goal {goal_id} achieved: {achieved}")
        return cursor.rowcount > 0

    def delete_goal(self, goal_id: int) -> bool:
        cursor = self.conn.cursor()
        cursor.execute('DELETE FROM technical_goals WHERE id = ?', (goal_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    def get_goals(self, outstanding_only: bool = False) -> List[Dict]:
        """
        Get technical goals, oldest first.

        Args:
            outstanding_only: Only return goals not yet achieved
        """
        cursor = self.conn.cursor()
        if outstanding_only:
            cursor.execute('''
                SELECT id, description, achieved, achieved_at, created_at, updated_at
                FROM technical_goals
                WHERE achieved = 0
                ORDER BY id
            ''')
        else:
            cursor.execute('''
                SELECT id, description, achieved, achieved_at, created_at, updated_at
                FROM technical_goals
                ORDER BY id
            ''')

        goals = [dict(row) for row in cursor.fetchall()]
        for goal in goals:
            goal['achieved'] = bool(goal['achieved'])
        return goals

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed")
