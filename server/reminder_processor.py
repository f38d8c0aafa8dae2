#!/usr/bin/env python3
"""
MemorialHub Reminder Processor
Daily scheduled job that checks every enabled reminder rule and sends the
ones that are due today. Called by APScheduler once a day (Beijing time),
by GET /api/cron, or directly: `python reminder_processor.py`.

Logic:
- "Today" is the calendar date in Asia/Shanghai (UTC+8)
- Settings are read once per run
- For each enabled rule whose memorial still exists and is due today:
  - missing channel credentials -> failed log entry, nothing sent
  - dispatch error -> failed log entry with the error text
  - otherwise -> success log entry
- Rules that are not due leave no trace
- One attempt per due rule per run, no retries and no duplicate guard
"""

import html as html_mod
import logging
import os
import sys
from datetime import datetime

import pytz

from date_matcher import next_occurrence, should_notify
from lunar_calendar import format_lunar
from memorial_manager import MemorialManager
from notifier import send_email, send_telegram
from settings_store import (
    SettingsStore, EMAIL_REQUIRED_KEYS, TELEGRAM_REQUIRED_KEYS, missing_keys,
)

logger = logging.getLogger(__name__)

BEIJING_TZ = pytz.timezone('Asia/Shanghai')


def beijing_today():
    """Current calendar date in the reference timezone."""
    return datetime.now(BEIJING_TZ).date()


# ── Message formatting ────────────────────────────────────────

def format_memorial_date(memorial):
    if memorial.get('date_mode') == 'lunar':
        return format_lunar(memorial.get('lunar_month'), memorial.get('lunar_day'),
                            bool(memorial.get('lunar_leap')))
    return memorial.get('solar_date') or ''


def build_subject(memorial):
    return f"📅 Memorial reminder: {memorial['name']}"


def build_message(memorial, days_before, occurrence=None):
    """Plain-text notification body."""
    name = memorial['name']
    if days_before == 0:
        lines = [f"🎉 Today is the day: {name}!"]
    else:
        unit = 'day' if days_before == 1 else 'days'
        lines = [f"📅 {days_before} {unit} until {name}!"]

    lines.append(f"📅 Date: {format_memorial_date(memorial)}")

    if memorial.get('person'):
        lines.append(f"👤 Person: {memorial['person']}")

    start_year = memorial.get('start_year')
    if start_year and occurrence is not None and occurrence.year > start_year:
        lines.append(f"🔢 {occurrence.year - start_year} years")

    return '\n'.join(lines)


# ── Dispatch ──────────────────────────────────────────────────

def _dispatch(channel, settings, subject, body):
    """Send one notification. Returns (status, message) for the log entry."""
    if channel == 'email':
        missing = missing_keys(settings, EMAIL_REQUIRED_KEYS)
        if missing:
            return 'failed', f"Incomplete configuration for email: missing {', '.join(missing)}"
        send_email(
            settings['smtp_host'], settings['smtp_port'], settings['smtp_user'],
            settings['smtp_pass'], settings['notify_email'], subject, body,
        )
        return 'success', None

    if channel == 'telegram':
        missing = missing_keys(settings, TELEGRAM_REQUIRED_KEYS)
        if missing:
            return 'failed', f"Incomplete configuration for Telegram: missing {', '.join(missing)}"
        send_telegram(settings['telegram_bot_token'], settings['telegram_chat_id'],
                      html_mod.escape(body, quote=False))
        return 'success', None

    return 'failed', f'Unsupported channel: {channel}'


def process_reminders(db_path, today=None):
    """Evaluate all enabled reminder rules for `today` and dispatch the due ones.
    Returns a summary dict; failures of single rules never abort the run.
    """
    if today is None:
        today = beijing_today()

    logger.info(f"[Reminders] Checking reminder rules for {today.isoformat()}")

    memorials = MemorialManager(db_path)
    reminders = memorials.list_enabled_reminders()
    if not reminders:
        logger.info("[Reminders] No enabled reminder rules")
        return {'checked': 0, 'due': 0, 'sent': 0, 'failed': 0}

    settings = SettingsStore(db_path).get_all()
    due_count = 0
    sent_count = 0
    failed_count = 0

    for reminder in reminders:
        try:
            memorial = memorials.get_memorial(reminder['memorial_id'])
            if not memorial:
                continue

            days_before = reminder['days_before']
            if not should_notify(memorial, days_before, today):
                continue
            due_count += 1

            subject = build_subject(memorial)
            body = build_message(memorial, days_before, next_occurrence(memorial, today))
            channel = reminder['channel']

            try:
                status, message = _dispatch(channel, settings, subject, body)
            except Exception as e:
                status, message = 'failed', str(e) or e.__class__.__name__

            memorials.insert_log(memorial['id'], channel, status, message)
            if status == 'success':
                sent_count += 1
            else:
                failed_count += 1
            logger.info(f"[Reminders] {status}: {memorial['name']} via {channel}"
                        + (f" ({message})" if message else ''))

        except Exception:
            logger.exception(f"[Reminders] Error processing reminder {reminder.get('id', '?')}")

    logger.info(f"[Reminders] Processing complete: {sent_count} sent, {failed_count} failed, "
                f"{due_count} due, {len(reminders)} checked")
    return {'checked': len(reminders), 'due': due_count, 'sent': sent_count, 'failed': failed_count}


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')
    result = process_reminders(os.environ.get('DATABASE_PATH', 'memorialhub.db'))
    sys.exit(0 if result['failed'] == 0 else 1)
