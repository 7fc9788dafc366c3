# healpoints/core/clock.py
from datetime import date, datetime
from zoneinfo import ZoneInfo

from healpoints.config.settings import settings


def clinic_now() -> datetime:
    """Naive wall-clock time in the clinic timezone; slot dates/times are stored the same way."""
    return datetime.now(ZoneInfo(settings.clinic_timezone)).replace(tzinfo=None)


def clinic_today() -> date:
    return clinic_now().date()
