#!/usr/bin/env python3
"""
Tests for the lunar calendar helpers and the statistics queries built on them.
"""

import os
import sys
import tempfile
import unittest
from datetime import date
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'server'))

import lunar_calendar
from lunar_calendar import (
    LunarDate,
    format_lunar,
    format_lunar_zh,
    lunar_to_solar,
    month_calendar,
    ganzhi_year,
    month_festivals,
    solar_term_on,
    solar_to_lunar,
    today_info,
    zodiac,
)
from memorial_manager import MemorialManager
from statistics_manager import StatisticsManager


class TestConversion(unittest.TestCase):

    def test_lunar_to_solar(self):
        self.assertEqual(lunar_to_solar(2026, 1, 1), date(2026, 2, 17))
        self.assertEqual(lunar_to_solar(2026, 8, 15), date(2026, 9, 25))
        self.assertEqual(lunar_to_solar(2027, 1, 1), date(2027, 2, 6))

    def test_solar_to_lunar(self):
        self.assertEqual(solar_to_lunar(date(2026, 2, 17)), LunarDate(2026, 1, 1, False))
        self.assertEqual(solar_to_lunar(date(2026, 9, 25)), LunarDate(2026, 8, 15, False))

    def test_nonexistent_leap_month(self):
        self.assertIsNone(lunar_to_solar(2026, 8, 15, leap=True))

    def test_years_outside_tables(self):
        self.assertIsNone(lunar_to_solar(2200, 1, 1))
        self.assertIsNone(solar_to_lunar(date(2200, 1, 1)))
        self.assertIsNone(solar_to_lunar(date(1850, 6, 1)))

    def test_month_calendar_outside_tables(self):
        days = month_calendar(2200, 1)
        self.assertEqual(len(days), 31)
        self.assertIsNone(days[0]['lunar_month'])
        self.assertIsNone(days[0]['lunar_text'])


class TestFormatting(unittest.TestCase):

    def test_english(self):
        self.assertEqual(format_lunar(8, 15), 'Lunar month 8 day 15')
        self.assertEqual(format_lunar(6, 1, True), 'Lunar leap month 6 day 1')

    def test_chinese(self):
        self.assertEqual(format_lunar_zh(1, 1), '正月初一')
        self.assertEqual(format_lunar_zh(8, 15), '八月十五')
        self.assertEqual(format_lunar_zh(12, 30), '腊月三十')
        self.assertEqual(format_lunar_zh(11, 21), '冬月廿一')
        self.assertEqual(format_lunar_zh(4, 10, True), '闰四月初十')


class TestFestivals(unittest.TestCase):

    def test_month_festivals_grouped_by_day(self):
        fake = [(date(2026, 2, 17), 'New Year'), (date(2026, 2, 14), 'Valentine'),
                (date(2026, 2, 17), 'Spring'), (date(2026, 3, 3), 'Other')]
        with patch.object(lunar_calendar, '_festival_dates', return_value=fake):
            result = month_festivals(2026, 2)
            self.assertEqual(result, [
                {'day': 14, 'names': ['Valentine']},
                {'day': 17, 'names': ['New Year', 'Spring']},
            ])
            days = month_calendar(2026, 2)
        self.assertEqual(len(days), 28)
        self.assertEqual(days[16]['festivals'], ['New Year', 'Spring'])
        self.assertEqual(days[16]['lunar_text'], '正月初一')
        # 2026-02-04 is the start of spring
        self.assertEqual(days[3]['solar_term'], 'start of spring')
        self.assertIsNone(days[16]['solar_term'])

    def test_solar_term_on(self):
        self.assertEqual(solar_term_on(date(2026, 4, 5)), 'clear and bright')
        self.assertEqual(solar_term_on(date(2026, 4, 5), 'zh'), '清明')
        self.assertIsNone(solar_term_on(date(2026, 4, 6)))

    def test_zodiac_and_ganzhi(self):
        self.assertEqual(zodiac(2026), 'Horse')
        self.assertEqual(zodiac(2026, 'zh'), '马')
        self.assertEqual(zodiac(2024), 'Dragon')
        self.assertEqual(ganzhi_year(2026), '丙午')
        self.assertEqual(ganzhi_year(1984), '甲子')

    def test_today_info(self):
        info = today_info(date(2026, 9, 25))
        self.assertEqual(info['solar'], '2026-09-25')
        self.assertEqual(info['weekday'], 'Friday')
        self.assertEqual(info['lunar'], 'Lunar month 8 day 15')
        self.assertEqual(info['lunar_year'], 2026)
        self.assertIsInstance(info['festivals'], list)
        self.assertEqual(info['zodiac'], 'Horse')
        self.assertEqual(info['ganzhi'], '丙午')
        self.assertIsNone(info['solar_term'])
        self.assertEqual(today_info(date(2026, 4, 5))['solar_term'], 'clear and bright')


class TestStatistics(unittest.TestCase):

    def setUp(self):
        self.db_fd, self.db_path = tempfile.mkstemp(suffix='.db')
        self.memorials = MemorialManager(self.db_path)
        self.stats = StatisticsManager(self.db_path)

    def tearDown(self):
        os.close(self.db_fd)
        os.unlink(self.db_path)

    def _create(self, **data):
        return self.memorials.create_memorial(data)['data']

    def test_upcoming_sorted_by_countdown(self):
        self._create(name='Later', date_mode='solar', solar_date='03-15')
        self._create(name='Sooner', date_mode='solar', solar_date='11-01')
        self._create(name='Leap', date_mode='solar', solar_date='02-29')
        self._create(name='Festival', date_mode='lunar', lunar_month=1, lunar_day=1)

        rows = self.stats.upcoming(date(2026, 10, 19))
        self.assertEqual([r['name'] for r in rows], ['Sooner', 'Festival', 'Later', 'Leap'])
        self.assertEqual(rows[0]['days_until'], 13)
        self.assertEqual(rows[1]['next_date'], '2027-02-06')
        self.assertIsNone(rows[-1]['days_until'])

        self.assertEqual(len(self.stats.upcoming(date(2026, 10, 19), limit=2)), 2)

    def test_counts(self):
        self._create(name='A', memorial_type='birthday', date_mode='solar', solar_date='03-15', group_name='Family')
        self._create(name='B', memorial_type='anniversary', date_mode='solar', solar_date='03-20')
        self._create(name='C', date_mode='lunar', lunar_month=8, lunar_day=15, group_name='Family')

        dashboard = self.stats.dashboard_stats()
        self.assertEqual(dashboard['total_memorials'], 3)
        self.assertEqual(dashboard['birthday_count'], 1)
        self.assertEqual(dashboard['group_count'], 1)

        overview = self.stats.overview()
        self.assertEqual(overview['solar_count'], 2)
        self.assertEqual(overview['lunar_count'], 1)

        by_month = self.stats.by_month()
        self.assertEqual(len(by_month), 12)
        self.assertEqual(by_month[2], {'month': 3, 'count': 2})

        by_type = {row['memorial_type']: row['count'] for row in self.stats.by_type()}
        self.assertEqual(by_type, {'anniversary': 1, 'birthday': 1, 'custom': 1})

    def test_notify_stats(self):
        memorial = self._create(name='A', date_mode='solar', solar_date='03-15')
        self.memorials.insert_log(memorial['id'], 'email', 'success')
        self.memorials.insert_log(memorial['id'], 'telegram', 'failed', 'boom')

        result = self.stats.notify_stats()
        self.assertEqual(result['total_sent'], 2)
        self.assertEqual(result['success_count'], 1)
        self.assertEqual(result['failed_count'], 1)
        self.assertEqual(result['telegram_count'], 1)


if __name__ == '__main__':
    unittest.main()
