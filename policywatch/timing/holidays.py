"""
US holiday calendar used by the timing engine.

Each tracked holiday has a date rule and a window (days before / days after)
during which an update counts as holiday-timed.
"""
import calendar
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel


def nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> Optional[date]:
    """``weekday`` uses Monday=0 ... Sunday=6. None if the month has no n-th such day."""
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    day = 1 + offset + 7 * (n - 1)
    if day > calendar.monthrange(year, month)[1]:
        return None
    return date(year, month, day)


def last_weekday_of_month(year: int, month: int, weekday: int) -> date:
    last = date(year, month, calendar.monthrange(year, month)[1])
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def easter_sunday(year: int) -> date:
    """Anonymous Gregorian algorithm."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def thanksgiving(year: int) -> date:
    return nth_weekday_of_month(year, 11, calendar.THURSDAY, 4)


class HolidayWindow(BaseModel):
    key: str
    name: str
    days_before: int
    days_after: int
    tier: str  # "major" | "minor"


class HolidayMatch(BaseModel):
    key: str
    name: str
    tier: str
    holiday_date: date
    days_from_holiday: int  # negative: before the holiday

    @property
    def timing(self) -> str:
        return format_days_timing(self.days_from_holiday)


_DATE_RULES: Dict[str, Callable[[int], Optional[date]]] = {
    "thanksgiving": thanksgiving,
    "black_friday": lambda y: thanksgiving(y) + timedelta(days=1),
    "christmas_eve": lambda y: date(y, 12, 24),
    "christmas": lambda y: date(y, 12, 25),
    "new_years_eve": lambda y: date(y, 12, 31),
    "new_years_day": lambda y: date(y, 1, 1),
    "mlk_day": lambda y: nth_weekday_of_month(y, 1, calendar.MONDAY, 3),
    "presidents_day": lambda y: nth_weekday_of_month(y, 2, calendar.MONDAY, 3),
    "easter": easter_sunday,
    "memorial_day": lambda y: last_weekday_of_month(y, 5, calendar.MONDAY),
    "independence_day": lambda y: date(y, 7, 4),
    "labor_day": lambda y: nth_weekday_of_month(y, 9, calendar.MONDAY, 1),
    "veterans_day": lambda y: date(y, 11, 11),
    "super_bowl": lambda y: nth_weekday_of_month(y, 2, calendar.SUNDAY, 2),
    "columbus_day": lambda y: nth_weekday_of_month(y, 10, calendar.MONDAY, 2),
}

# Checked in order; majors before minors, first match wins.
MAJOR_HOLIDAYS: List[HolidayWindow] = [
    HolidayWindow(key="thanksgiving", name="Thanksgiving", days_before=2, days_after=4, tier="major"),
    HolidayWindow(key="black_friday", name="Black Friday", days_before=0, days_after=3, tier="major"),
    HolidayWindow(key="christmas_eve", name="Christmas Eve", days_before=3, days_after=0, tier="major"),
    HolidayWindow(key="christmas", name="Christmas Day", days_before=0, days_after=0, tier="major"),
    HolidayWindow(key="new_years_eve", name="New Year's Eve", days_before=2, days_after=0, tier="major"),
    HolidayWindow(key="new_years_day", name="New Year's Day", days_before=0, days_after=2, tier="major"),
]

MINOR_HOLIDAYS: List[HolidayWindow] = [
    HolidayWindow(key="mlk_day", name="MLK Day", days_before=1, days_after=1, tier="minor"),
    HolidayWindow(key="presidents_day", name="Presidents' Day", days_before=1, days_after=1, tier="minor"),
    HolidayWindow(key="easter", name="Easter", days_before=2, days_after=1, tier="minor"),
    HolidayWindow(key="memorial_day", name="Memorial Day", days_before=2, days_after=1, tier="minor"),
    HolidayWindow(key="independence_day", name="Independence Day", days_before=2, days_after=1, tier="minor"),
    HolidayWindow(key="labor_day", name="Labor Day", days_before=2, days_after=1, tier="minor"),
    HolidayWindow(key="veterans_day", name="Veterans Day", days_before=1, days_after=1, tier="minor"),
    HolidayWindow(key="super_bowl", name="Super Bowl Sunday", days_before=1, days_after=1, tier="minor"),
]

# Exact-date list used by the simple suspicious-timing verdict
EXACT_DATE_HOLIDAYS: Tuple[str, ...] = (
    "new_years_day", "independence_day", "christmas_eve", "christmas", "new_years_eve",
    "mlk_day", "presidents_day", "memorial_day", "labor_day", "columbus_day",
    "thanksgiving", "black_friday", "veterans_day",
)


def holiday_date(key: str, year: int) -> Optional[date]:
    rule = _DATE_RULES.get(key)
    return rule(year) if rule else None


def format_days_timing(days: int) -> str:
    if days == 0:
        return "on"
    if days < 0:
        n = abs(days)
        return "1 day before" if n == 1 else f"{n} days before"
    return "1 day after" if days == 1 else f"{days} days after"


def find_holiday(day: date) -> Optional[HolidayMatch]:
    """
    First holiday window containing ``day``. Windows are evaluated against the
    holiday in the same calendar year as well as the adjacent years, so that a
    window may span New Year.
    """
    for window in (*MAJOR_HOLIDAYS, *MINOR_HOLIDAYS):
        for year in (day.year, day.year + 1, day.year - 1):
            observed = holiday_date(window.key, year)
            if observed is None:
                continue
            if observed - timedelta(days=window.days_before) <= day <= observed + timedelta(days=window.days_after):
                return HolidayMatch(
                    key=window.key,
                    name=window.name,
                    tier=window.tier,
                    holiday_date=observed,
                    days_from_holiday=(day - observed).days,
                )
    return None


def exact_holiday(day: date) -> Optional[str]:
    """Holiday key when ``day`` is exactly one of the exact-date holidays."""
    for key in EXACT_DATE_HOLIDAYS:
        if holiday_date(key, day.year) == day:
            return key
    return None
