"""
Completed practice session records and their display formatting.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional


def format_clock_time(millis: int) -> str:
    """H:MM:SS when there are hours, otherwise M:SS."""
    total_seconds = max(0, int(millis)) // 1000
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def format_practice_duration(millis: int) -> str:
    """Compact duration for calendar summaries, e.g. '2h 30m' or '45s'."""
    total_seconds = max(0, int(millis)) // 1000
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m"
    return f"{seconds}s"


@dataclass
class PracticeSession:
    """A finished session as stored by the database."""
    id: Optional[int] = None
    date: datetime = field(default_factory=datetime.now)
    total_time_millis: int = 0
    practice_time_millis: int = 0
    targeted_goal_ids: List[int] = field(default_factory=list)

    def formatted_date(self, today: Optional[date] = None) -> str:
        today = today or date.today()
        session_date = self.date.date()
        if session_date == today:
            return "Today"
        if session_date == today - timedelta(days=1):
            return "Yesterday"
        return f"{self.date:%b} {self.date.day}, {self.date.year}"

    @property
    def formatted_start_time(self) -> str:
        hour = self.date.hour % 12 or 12
        suffix = "AM" if self.date.hour < 12 else "PM"
        return f"{hour}:{self.date.minute:02d} {suffix}"

    @property
    def formatted_total_time(self) -> str:
        return format_clock_time(self.total_time_millis)

    @property
    def formatted_practice_time(self) -> str:
        return format_clock_time(self.practice_time_millis)

    @property
    def practice_percentage(self) -> int:
        if self.total_time_millis <= 0:
            return 0
        return int(self.practice_time_millis / self.total_time_millis * 100)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'date': self.date.isoformat(timespec='seconds'),
            'total_time_ms': self.total_time_millis,
            'practice_time_ms': self.practice_time_millis,
            'formatted_date': self.formatted_date(),
            'formatted_start_time': self.formatted_start_time,
            'formatted_total_time': self.formatted_total_time,
            'formatted_practice_time': self.formatted_practice_time,
            'practice_percentage': self.practice_percentage,
            'targeted_goal_ids': list(self.targeted_goal_ids),
        }

    @classmethod
    def from_row(cls, row, targeted_goal_ids: Optional[List[int]] = None) -> "PracticeSession":
        """Build from a practice_sessions row (sqlite3.Row or dict)."""
        return cls(
            id=row['id'],
            date=datetime.fromtimestamp(row['start_timestamp']),
            total_time_millis=row['total_time_ms'],
            practice_time_millis=row['practice_time_ms'],
            targeted_goal_ids=list(targeted_goal_ids or []),
        )
