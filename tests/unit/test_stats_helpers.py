"""Time-of-day classification and perfect-week counting."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from cvr.gamification.stats import count_perfect_weeks, is_early_morning, is_late_night


def _at(hour: int) -> datetime:
    return datetime(2026, 3, 10, hour, 30, tzinfo=timezone.utc)


class TestTimeOfDay:
    """Late night is 22:00-02:00 UTC, early morning 05:00-07:00 UTC."""

    def test_late_night(self):
        assert is_late_night(_at(22))
        assert is_late_night(_at(23))
        assert is_late_night(_at(1))
        assert not is_late_night(_at(2))
        assert not is_late_night(_at(21))

    def test_early_morning(self):
        assert is_early_morning(_at(5))
        assert is_early_morning(_at(6))
        assert not is_early_morning(_at(7))
        assert not is_early_morning(_at(4))

    def test_naive_treated_as_utc(self):
        assert is_late_night(datetime(2026, 3, 10, 23, 0))

    def test_other_timezone_converted(self):
        plus_two = timezone(timedelta(hours=2))
        # 00:30 at UTC+2 is 22:30 UTC
        assert is_late_night(datetime(2026, 3, 10, 0, 30, tzinfo=plus_two))


class TestPerfectWeeks:
    """A perfect week needs every daily goal completed on all seven ISO-week days."""

    MONDAY = date(2026, 3, 9)

    def _week(self, start: date, completed: bool = True) -> list[tuple[date, bool]]:
        rows = []
        for offset in range(7):
            day = start + timedelta(days=offset)
            rows.extend([(day, True), (day, completed)])
        return rows

    def test_full_week(self):
        assert count_perfect_weeks(self._week(self.MONDAY)) == 1

    def test_one_goal_missed(self):
        rows = self._week(self.MONDAY)
        rows[-1] = (rows[-1][0], False)
        assert count_perfect_weeks(rows) == 0

    def test_week_must_align_to_monday(self):
        # Seven perfect days starting on a Wednesday span two ISO weeks
        assert count_perfect_weeks(self._week(self.MONDAY + timedelta(days=2))) == 0

    def test_two_weeks(self):
        rows = self._week(self.MONDAY) + self._week(self.MONDAY + timedelta(days=7))
        assert count_perfect_weeks(rows) == 2

    def test_empty(self):
        assert count_perfect_weeks([]) == 0
