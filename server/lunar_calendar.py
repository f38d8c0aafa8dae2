#!/usr/bin/env python3
"""
MemorialHub Lunar Calendar helpers
Thin wrapper around the `lunarcalendar` package: solar <-> lunar conversion,
display strings, festival and solar-term lookup for calendar rendering.
Public-holiday metadata comes from the festival list; official yearly
holiday schedules (swapped working days) are not modelled.
"""

import calendar
import logging
from collections import namedtuple
from datetime import date

from lunarcalendar import Converter, Solar, Lunar, DateNotExist
from lunarcalendar.festival import festivals as FESTIVALS
from lunarcalendar.solarterm import solarterms as SOLAR_TERMS

logger = logging.getLogger(__name__)

LunarDate = namedtuple('LunarDate', ['year', 'month', 'day', 'leap'])

# Years covered by the conversion tables of `lunarcalendar`
MIN_YEAR = 1900
MAX_YEAR = 2099

WEEKDAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']

ZH_MONTHS = ['正', '二', '三', '四', '五', '六', '七', '八', '九', '十', '冬', '腊']
ZH_DAY_PREFIX = ['初', '十', '廿', '三']
ZH_DIGITS = ['', '一', '二', '三', '四', '五', '六', '七', '八', '九', '十']

HEAVENLY_STEMS = ['甲', '乙', '丙', '丁', '戊', '己', '庚', '辛', '壬', '癸']
EARTHLY_BRANCHES = ['子', '丑', '寅', '卯', '辰', '巳', '午', '未', '申', '酉', '戌', '亥']
ZODIAC_EN = ['Rat', 'Ox', 'Tiger', 'Rabbit', 'Dragon', 'Snake',
             'Horse', 'Goat', 'Monkey', 'Rooster', 'Dog', 'Pig']
ZODIAC_ZH = ['鼠', '牛', '虎', '兔', '龙', '蛇', '马', '羊', '猴', '鸡', '狗', '猪']


def year_supported(year):
    return MIN_YEAR <= year <= MAX_YEAR


# ── Conversion ────────────────────────────────────────────────

def lunar_to_solar(year, month, day, leap=False):
    """Convert a lunar date to a solar `date`. Returns None if it does not exist."""
    if not year_supported(year):
        return None
    try:
        solar = Converter.Lunar2Solar(Lunar(year, month, day, isleap=bool(leap)))
        return date(solar.year, solar.month, solar.day)
    except (DateNotExist, ValueError, TypeError, IndexError) as e:
        logger.debug(f"[Lunar] {year}-{month}-{day} leap={leap} does not exist: {e}")
        return None


def solar_to_lunar(d):
    """Convert a solar `date` to a LunarDate. Returns None if out of the supported range."""
    if not year_supported(d.year):
        return None
    try:
        lunar = Converter.Solar2Lunar(Solar(d.year, d.month, d.day))
        return LunarDate(lunar.year, lunar.month, lunar.day, bool(lunar.isleap))
    except (DateNotExist, ValueError, TypeError, IndexError) as e:
        logger.warning(f"[Lunar] Cannot convert {d}: {e}")
        return None


# ── Display ───────────────────────────────────────────────────

def format_lunar(month, day, leap=False):
    """English display string, e.g. 'Lunar month 8 day 15'."""
    return f"Lunar {'leap ' if leap else ''}month {month} day {day}"


def format_lunar_zh(month, day, leap=False):
    """Chinese display string, e.g. '八月十五'."""
    if day == 10:
        day_text = '初十'
    elif day == 20:
        day_text = '二十'
    elif day == 30:
        day_text = '三十'
    else:
        day_text = ZH_DAY_PREFIX[day // 10] + ZH_DIGITS[day % 10]
    return f"{'闰' if leap else ''}{ZH_MONTHS[month - 1]}月{day_text}"


# ── Festivals ─────────────────────────────────────────────────

def _festival_dates(year, lang):
    """(date, name) for every known festival in a solar year."""
    result = []
    for fest in FESTIVALS:
        try:
            result.append((fest(year), fest.get_lang(lang)))
        except (DateNotExist, ValueError, IndexError) as e:
            logger.debug(f"[Lunar] Festival skipped for {year}: {e}")
    return result


def festivals_on(d, lang='en'):
    """Names of festivals falling on a given solar date."""
    return [name for fest_date, name in _festival_dates(d.year, lang) if fest_date == d]


def _solar_term_dates(year, lang):
    """(date, name) for the 24 solar terms of a solar year."""
    return [(term(year), term.get_lang(lang)) for term in SOLAR_TERMS]


def solar_term_on(d, lang='en'):
    """Name of the solar term starting on a given date, or None."""
    for term_date, name in _solar_term_dates(d.year, lang):
        if term_date == d:
            return name
    return None


def zodiac(lunar_year, lang='en'):
    names = ZODIAC_ZH if lang.lower().startswith('zh') else ZODIAC_EN
    return names[(lunar_year - 4) % 12]


def ganzhi_year(lunar_year):
    """Sexagenary name of a lunar year, e.g. 丙午 for 2026."""
    return HEAVENLY_STEMS[(lunar_year - 4) % 10] + EARTHLY_BRANCHES[(lunar_year - 4) % 12]


def month_festivals(year, month, lang='en'):
    """[{day, names}] for the festivals of a solar month, by day."""
    by_day = {}
    for fest_date, name in _festival_dates(year, lang):
        if fest_date.month == month:
            by_day.setdefault(fest_date.day, []).append(name)
    return [{'day': day, 'names': names} for day, names in sorted(by_day.items())]


def month_calendar(year, month, lang='en'):
    """One entry per day of a solar month with its lunar date and festivals."""
    by_day = {item['day']: item['names'] for item in month_festivals(year, month, lang)}
    terms = {term_date.day: name for term_date, name in _solar_term_dates(year, lang)
             if term_date.month == month}

    days = []
    for day in range(1, calendar.monthrange(year, month)[1] + 1):
        lunar = solar_to_lunar(date(year, month, day))
        days.append({
            'day': day,
            'lunar_month': lunar.month if lunar else None,
            'lunar_day': lunar.day if lunar else None,
            'lunar_leap': lunar.leap if lunar else False,
            'lunar_text': format_lunar_zh(lunar.month, lunar.day, lunar.leap) if lunar else None,
            'festivals': by_day.get(day, []),
            'solar_term': terms.get(day),
        })
    return days


def today_info(today, lang='en'):
    """Header card data for the dashboard."""
    lunar = solar_to_lunar(today)
    return {
        'solar': today.strftime('%Y-%m-%d'),
        'weekday': WEEKDAY_NAMES[today.weekday()],
        'lunar': format_lunar(lunar.month, lunar.day, lunar.leap) if lunar else None,
        'lunar_zh': format_lunar_zh(lunar.month, lunar.day, lunar.leap) if lunar else None,
        'lunar_year': lunar.year if lunar else None,
        'zodiac': zodiac(lunar.year, lang) if lunar else None,
        'ganzhi': ganzhi_year(lunar.year) if lunar else None,
        'festivals': festivals_on(today, lang),
        'solar_term': solar_term_on(today, lang),
    }
