"""
Holiday Calendar Module

Brazilian national holidays used when a schedule skips holidays: nine fixed
dates plus four movable ones derived from Easter.
"""

from datetime import date, timedelta
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

# (month, day, name)
FIXED_HOLIDAYS = [
    (1, 1, "Confraternização Universal"),
    (4, 21, "Tiradentes"),
    (5, 1, "Dia do Trabalho"),
    (9, 7, "Independência do Brasil"),
    (10, 12, "Nossa Senhora Aparecida"),
    (11, 2, "Finados"),
    (11, 15, "Proclamação da República"),
    (11, 20, "Consciência Negra"),
    (12, 25, "Natal"),
]


def easter_date(year: int) -> date:
    """Easter Sunday (Meeus/Jones/Butcher algorithm)"""
    a = year % 19
    b = year // 100
    c = year % 100
    d = b // 4
    e = b % 4
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i = c // 4
    k = c % 4
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month = (h + l - 7 * m + 114) // 31
    day = ((h + l - 7 * m + 114) % 31) + 1
    return date(year, month, day)


def _movable_holidays(year: int) -> List[Tuple[date, str]]:
    easter = easter_date(year)
    return [
        (easter - timedelta(days=48), "Carnaval (Segunda)"),
        (easter - timedelta(days=47), "Carnaval (Terça)"),
        (easter - timedelta(days=2), "Sexta-feira Santa"),
        (easter + timedelta(days=60), "Corpus Christi"),
    ]


@lru_cache(maxsize=64)
def _holiday_map(year: int) -> Dict[date, str]:
    holidays = {date(year, month, day): name for month, day, name in FIXED_HOLIDAYS}
    holidays.update(dict(_movable_holidays(year)))
    return holidays


def holidays_for_year(year: int) -> List[Tuple[date, str]]:
    """All national holidays of a year, sorted by date"""
    return sorted(_holiday_map(year).items())


def holiday_name(day: date) -> Optional[str]:
    """Name of the holiday falling on ``day``, or None"""
    return _holiday_map(day.year).get(day)


def is_holiday(day: date) -> bool:
    """Check if ``day`` is a national holiday"""
    return day in _holiday_map(day.year)
