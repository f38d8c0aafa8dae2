#!/usr/bin/env python3
"""
Tests for date_matcher: next occurrence of solar and lunar memorials
and the "is this reminder due today" rule.

Lunar reference dates:
  Chinese New Year 2026 = 2026-02-17, 2027 = 2027-02-06
  Mid-Autumn (8/15) 2026 = 2026-09-25
"""

import os
import sys
import unittest
from datetime import date
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'server'))

import date_matcher
from date_matcher import (
    days_until_next,
    lunar_reminders_enabled,
    next_occurrence,
    parse_solar_date,
    resolve_lunar,
    should_notify,
)


def _solar(solar_date):
    return {'id': 1, 'name': 'Test', 'date_mode': 'solar', 'solar_date': solar_date}


def _lunar(month, day, leap=0):
    return {'id': 2, 'name': 'Test', 'date_mode': 'lunar',
            'lunar_month': month, 'lunar_day': day, 'lunar_leap': leap}


class TestParseSolarDate(unittest.TestCase):

    def test_valid(self):
        self.assertEqual(parse_solar_date('03-15'), (3, 15))
        self.assertEqual(parse_solar_date('3-5'), (3, 5))

    def test_malformed(self):
        for value in (None, '', '0315', '13-01', '00-10', '03-32', 'ab-cd', '2026-03-15'):
            self.assertIsNone(parse_solar_date(value), value)


class TestSolarOccurrence(unittest.TestCase):

    def test_later_this_year(self):
        self.assertEqual(next_occurrence(_solar('03-15'), date(2026, 3, 12)), date(2026, 3, 15))

    def test_today_counts_as_this_year(self):
        self.assertEqual(days_until_next(_solar('03-15'), date(2026, 3, 15)), 0)

    def test_passed_rolls_to_next_year(self):
        today = date(2026, 10, 19)
        self.assertEqual(next_occurrence(_solar('03-15'), today), date(2027, 3, 15))
        self.assertEqual(days_until_next(_solar('03-15'), today), 147)

    def test_leap_day_skips_common_years(self):
        self.assertIsNone(next_occurrence(_solar('02-29'), date(2026, 10, 19)))
        self.assertEqual(next_occurrence(_solar('02-29'), date(2027, 12, 1)), date(2028, 2, 29))

    def test_malformed_date_has_no_occurrence(self):
        self.assertIsNone(next_occurrence(_solar('not-a-date'), date(2026, 1, 1)))
        self.assertIsNone(next_occurrence(_solar(None), date(2026, 1, 1)))

    def test_unknown_mode(self):
        self.assertIsNone(next_occurrence({'date_mode': 'weekly'}, date(2026, 1, 1)))


class TestShouldNotify(unittest.TestCase):

    def test_due_exactly_lead_days_before(self):
        memorial = _solar('03-15')
        self.assertTrue(should_notify(memorial, 3, date(2026, 3, 12)))
        self.assertFalse(should_notify(memorial, 3, date(2026, 3, 13)))
        self.assertFalse(should_notify(memorial, 3, date(2026, 3, 11)))

    def test_zero_lead_fires_on_the_day(self):
        memorial = _solar('03-15')
        self.assertTrue(should_notify(memorial, 0, date(2026, 3, 15)))
        self.assertFalse(should_notify(memorial, 0, date(2026, 3, 14)))

    def test_lead_across_new_year(self):
        self.assertTrue(should_notify(_solar('01-02'), 5, date(2026, 12, 28)))

    def test_invalid_date_never_due(self):
        self.assertFalse(should_notify(_solar('99-99'), 0, date(2026, 3, 15)))

    def test_leap_day_not_due_in_common_year(self):
        self.assertFalse(should_notify(_solar('02-29'), 0, date(2026, 2, 28)))
        self.assertFalse(should_notify(_solar('02-29'), 0, date(2026, 3, 1)))

    def test_matcher_error_is_not_due(self):
        with patch.object(date_matcher, 'next_occurrence', side_effect=RuntimeError('boom')):
            self.assertFalse(should_notify(_solar('03-15'), 3, date(2026, 3, 12)))


class TestLunarOccurrence(unittest.TestCase):

    def setUp(self):
        self._saved = os.environ.pop('LUNAR_REMINDERS', None)

    def tearDown(self):
        os.environ.pop('LUNAR_REMINDERS', None)
        if self._saved is not None:
            os.environ['LUNAR_REMINDERS'] = self._saved

    def test_mid_autumn_this_year(self):
        memorial = _lunar(8, 15)
        self.assertEqual(next_occurrence(memorial, date(2026, 9, 22)), date(2026, 9, 25))
        self.assertTrue(should_notify(memorial, 3, date(2026, 9, 22)))
        self.assertFalse(should_notify(memorial, 2, date(2026, 9, 22)))

    def test_new_year_rolls_forward(self):
        memorial = _lunar(1, 1)
        self.assertEqual(next_occurrence(memorial, date(2026, 10, 19)), date(2027, 2, 6))
        self.assertEqual(days_until_next(memorial, date(2026, 10, 19)), 110)

    def test_new_year_from_previous_lunar_year(self):
        # 2026-01-10 is still in lunar year 2025
        self.assertEqual(next_occurrence(_lunar(1, 1), date(2026, 1, 10)), date(2026, 2, 17))

    def test_on_the_day(self):
        self.assertTrue(should_notify(_lunar(1, 1), 0, date(2026, 2, 17)))

    def test_missing_fields(self):
        self.assertIsNone(next_occurrence(_lunar(None, 15), date(2026, 1, 1)))
        self.assertIsNone(next_occurrence(_lunar(8, None), date(2026, 1, 1)))

    def test_missing_leap_month_falls_back_to_regular(self):
        # 2026 has no leap eighth month
        self.assertEqual(resolve_lunar(2026, 8, 15, leap=True), date(2026, 9, 25))

    def test_day_thirty_falls_back_to_twenty_nine(self):
        calls = []

        def fake_lunar_to_solar(year, month, day, leap=False):
            calls.append((month, day, leap))
            return date(2026, 1, 1) if day == 29 else None

        with patch.object(date_matcher, 'lunar_to_solar', side_effect=fake_lunar_to_solar):
            self.assertEqual(resolve_lunar(2026, 5, 30), date(2026, 1, 1))
        self.assertEqual(calls, [(5, 30, False), (5, 29, False)])

    def test_unresolvable_lunar_date(self):
        with patch.object(date_matcher, 'lunar_to_solar', return_value=None):
            self.assertIsNone(next_occurrence(_lunar(8, 15), date(2026, 9, 22)))

    def test_lunar_reminders_can_be_disabled(self):
        os.environ['LUNAR_REMINDERS'] = '0'
        self.assertFalse(lunar_reminders_enabled())
        self.assertFalse(should_notify(_lunar(8, 15), 3, date(2026, 9, 22)))
        # solar rules are unaffected
        self.assertTrue(should_notify(_solar('03-15'), 3, date(2026, 3, 12)))

    def test_lunar_reminders_enabled_by_default(self):
        self.assertTrue(lunar_reminders_enabled())


if __name__ == '__main__':
    unittest.main()
