"""
Gestion du temps pour le domaine.

Les instants sont stockés en UTC. Les comparaisons métier (fin d'un lot,
ouverture des inscriptions) se font dans le fuseau civil de l'organisation,
pour coller aux horaires d'exploitation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from admission import config


def business_timezone() -> ZoneInfo:
    return ZoneInfo(config.BUSINESS_TIMEZONE)


def now() -> datetime:
    """Instant courant, en UTC."""
    return datetime.now(timezone.utc)


def as_utc(moment: datetime | None) -> datetime | None:
    """
    Normalise un instant en UTC.

    Un datetime naïf est considéré comme déjà en UTC : c'est ce que
    renvoient les bases qui ne conservent pas le fuseau (SQLite).
    """
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def business_time(moment: datetime) -> datetime:
    """Convertit un instant dans le fuseau métier."""
    return as_utc(moment).astimezone(business_timezone())


def has_passed(moment: datetime | None, current: datetime) -> bool:
    """Vrai si `moment` est strictement antérieur à `current`."""
    if moment is None:
        return False
    return business_time(moment) < business_time(current)


def has_arrived(moment: datetime | None, current: datetime) -> bool:
    """Vrai si `moment` est atteint (ou absent)."""
    if moment is None:
        return True
    return business_time(moment) <= business_time(current)
