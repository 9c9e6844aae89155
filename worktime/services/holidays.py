"""
Computed German public holidays, used to seed the holiday table.

Federal holidays apply to everybody; regional ones only to employees of
the matching region. Only Bavaria ("BY") is covered regionally.
"""
import logging
from datetime import date, timedelta
from typing import List, Tuple

from sqlalchemy.orm import Session

from worktime.models.holiday import Holiday, HolidayScope

logger = logging.getLogger(__name__)


def easter_sunday(year: int) -> date:
    """Gregorian Easter Sunday (anonymous Gregorian algorithm)."""
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


def federal_holidays(year: int) -> List[Tuple[date, str]]:
    easter = easter_sunday(year)
    return [
        (date(year, 1, 1), "Neujahr"),
        (easter - timedelta(days=2), "Karfreitag"),
        (easter + timedelta(days=1), "Ostermontag"),
        (date(year, 5, 1), "Tag der Arbeit"),
        (easter + timedelta(days=39), "Christi Himmelfahrt"),
        (easter + timedelta(days=50), "Pfingstmontag"),
        (date(year, 10, 3), "Tag der Deutschen Einheit"),
        (date(year, 12, 25), "1. Weihnachtstag"),
        (date(year, 12, 26), "2. Weihnachtstag"),
    ]


def regional_holidays(year: int, region: str) -> List[Tuple[date, str]]:
    if region != "BY":
        return []
    easter = easter_sunday(year)
    return [
        (date(year, 1, 6), "Heilige Drei Könige"),
        (easter + timedelta(days=60), "Fronleichnam"),
        (date(year, 8, 15), "Mariä Himmelfahrt"),
        (date(year, 11, 1), "Allerheiligen"),
    ]


def seed_holidays(db: Session, year: int, region: str = "BY") -> int:
    """
    Insert the year's holidays that are not stored yet.

    Returns:
        Number of holidays inserted
    """
    wanted = [(d, n, HolidayScope.FEDERAL.value, None) for d, n in federal_holidays(year)]
    wanted += [(d, n, HolidayScope.REGIONAL.value, region) for d, n in regional_holidays(year, region)]

    existing = {
        (h.date, h.scope, h.region)
        for h in db.query(Holiday).filter(Holiday.date >= date(year, 1, 1), Holiday.date <= date(year, 12, 31))
    }
    inserted = 0
    for day, name, scope, holiday_region in wanted:
        if (day, scope, holiday_region) in existing:
            continue
        db.add(Holiday(date=day, name=name, scope=scope, region=holiday_region))
        inserted += 1
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Seeded {inserted} holiday(s) for {year}/{region}")
    return inserted
