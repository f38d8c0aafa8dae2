#!/usr/bin/env python3
"""
MemorialHub Recurring-Date Matcher
Works out the next solar occurrence of a memorial's yearly date and whether
a reminder with a given lead time is due on a given day.

All functions take a memorial as a dict (a DB row) and never raise for bad
date data: an unresolvable memorial simply has no next occurrence.
"""

import logging
import os
from datetime import date

from lunar_calendar import lunar_to_solar, solar_to_lunar

logger = logging.getLogger(__name__)


def lunar_reminders_enabled():
    """LUNAR_REMINDERS=0 restores the legacy behaviour where lunar reminders never fire."""
    return os.environ.get('LUNAR_REMINDERS', '1').strip().lower() not in ('0', 'false', 'no', 'off')


def parse_solar_date(solar_date):
    """'MM-DD' -> (month, day), or None if malformed."""
    if not solar_date:
        return None
    parts = str(solar_date).strip().split('-')
    if len(parts) != 2:
        return None
    try:
        month, day = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    return month, day


def _solar_candidate(year, month, day):
    try:
        return date(year, month, day)
    except ValueError:
        # e.g. 02-29 in a common year
        return None


def resolve_lunar(year, month, day, leap=False):
    """Solar date of a lunar month/day in a given lunar year.
    A leap month missing that year falls back to the regular month,
    and day 30 of a short month falls back to day 29.
    """
    attempts = [(month, day, leap)]
    if leap:
        attempts.append((month, day, False))
    if day == 30:
        attempts.extend((month, 29, flag) for _, _, flag in list(attempts))
    for m, d, is_leap in attempts:
        solar = lunar_to_solar(year, m, d, is_leap)
        if solar is not None:
            return solar
    return None


def _next_solar_occurrence(memorial, today):
    parsed = parse_solar_date(memorial.get('solar_date'))
    if not parsed:
        return None
    month, day = parsed
    for year in (today.year, today.year + 1):
        candidate = _solar_candidate(year, month, day)
        if candidate is not None and candidate >= today:
            return candidate
    return None


def _next_lunar_occurrence(memorial, today):
    month = memorial.get('lunar_month')
    day = memorial.get('lunar_day')
    if not month or not day:
        return None
    try:
        month, day = int(month), int(day)
    except (TypeError, ValueError):
        return None
    leap = bool(memorial.get('lunar_leap'))

    lunar_today = solar_to_lunar(today)
    if lunar_today is None:
        return None

    for year in (lunar_today.year, lunar_today.year + 1):
        candidate = resolve_lunar(year, month, day, leap)
        if candidate is not None and candidate >= today:
            return candidate
    return None


def next_occurrence(memorial, today):
    """Next solar date on or after `today` when the memorial falls, or None."""
    mode = memorial.get('date_mode')
    if mode == 'solar':
        return _next_solar_occurrence(memorial, today)
    if mode == 'lunar':
        return _next_lunar_occurrence(memorial, today)
    return None


def days_until_next(memorial, today):
    """Whole days until the next occurrence (0 = today), or None."""
    occurrence = next_occurrence(memorial, today)
    if occurrence is None:
        return None
    return (occurrence - today).days


def should_notify(memorial, days_before, today):
    """True when today is exactly `days_before` days ahead of the next occurrence."""
    if memorial.get('date_mode') == 'lunar' and not lunar_reminders_enabled():
        return False
    try:
        diff = days_until_next(memorial, today)
    except Exception:
        logger.exception(f"[Matcher] Could not evaluate memorial {memorial.get('id', '?')}")
        return False
    return diff is not None and diff == days_before
