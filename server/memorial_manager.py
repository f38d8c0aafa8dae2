#!/usr/bin/env python3
"""
MemorialHub Memorial Manager
CRUD for memorials and their reminder rules, plus the append-only
notification log written by the daily reminder job.
"""

import logging
from datetime import datetime

from database_setup import MemorialHubDatabase, get_connection
from date_matcher import parse_solar_date

logger = logging.getLogger(__name__)

MEMORIAL_TYPES = ('birthday', 'anniversary', 'custom')
DATE_MODES = ('solar', 'lunar')
CHANNELS = ('email', 'telegram')
LOG_STATUSES = ('success', 'failed')

MEMORIAL_FIELDS = (
    'name', 'memorial_type', 'date_mode', 'solar_date', 'lunar_month',
    'lunar_day', 'lunar_leap', 'start_year', 'person', 'group_name', 'note',
    'recurring',
)


class MemorialManager:
    def __init__(self, db_path='memorialhub.db'):
        self.db_path = db_path
        MemorialHubDatabase(db_path).create_tables()

    # ── Helpers ───────────────────────────────────────────────

    def _get_conn(self):
        return get_connection(self.db_path)

    def _sanitize_text(self, value, max_len=500):
        """Truncate text fields; empty strings become None."""
        if value is None:
            return None
        value = str(value)[:max_len].strip()
        return value or None

    def _to_flag(self, value, default):
        """0/1 from a JSON bool, a number or a form string like 'false'."""
        if value is None or value == '':
            return default
        if isinstance(value, str):
            return 0 if value.strip().lower() in ('0', 'false', 'no', 'off') else 1
        return 1 if value else 0

    def _to_int(self, value):
        if value is None or value == '':
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f'Expected a whole number, got {value!r}')

    def _normalize_memorial(self, data):
        """Validate a full memorial record. Returns (record, error_message).
        Only the fields of the chosen date mode are kept populated.
        """
        name = self._sanitize_text(data.get('name'), 200)
        if not name:
            return None, 'Name is required'

        memorial_type = data.get('memorial_type') or 'custom'
        if memorial_type not in MEMORIAL_TYPES:
            return None, f"Invalid memorial type, expected one of: {', '.join(MEMORIAL_TYPES)}"

        date_mode = data.get('date_mode') or 'solar'
        if date_mode not in DATE_MODES:
            return None, 'Invalid date mode, expected solar or lunar'

        try:
            start_year = self._to_int(data.get('start_year'))
            lunar_month = self._to_int(data.get('lunar_month'))
            lunar_day = self._to_int(data.get('lunar_day'))
        except ValueError as e:
            return None, str(e)

        record = {
            'name': name,
            'memorial_type': memorial_type,
            'date_mode': date_mode,
            'solar_date': None,
            'lunar_month': None,
            'lunar_day': None,
            'lunar_leap': 0,
            'start_year': start_year,
            'person': self._sanitize_text(data.get('person'), 200),
            'group_name': self._sanitize_text(data.get('group_name'), 100),
            'note': self._sanitize_text(data.get('note'), 2000),
            'recurring': self._to_flag(data.get('recurring'), 1),
        }

        if date_mode == 'solar':
            parsed = parse_solar_date(data.get('solar_date'))
            if not parsed:
                return None, 'Solar date must be in MM-DD format'
            record['solar_date'] = f'{parsed[0]:02d}-{parsed[1]:02d}'
        else:
            if not lunar_month or not 1 <= lunar_month <= 12:
                return None, 'Lunar month must be between 1 and 12'
            if not lunar_day or not 1 <= lunar_day <= 30:
                return None, 'Lunar day must be between 1 and 30'
            record['lunar_month'] = lunar_month
            record['lunar_day'] = lunar_day
            record['lunar_leap'] = self._to_flag(data.get('lunar_leap'), 0)

        return record, None

    # ── Memorials ─────────────────────────────────────────────

    def list_memorials(self, keyword=None, memorial_type=None, group=None):
        """Newest first, optionally filtered by name/person keyword, type or group."""
        sql = 'SELECT * FROM memorials WHERE 1=1'
        args = []
        if keyword:
            sql += ' AND (name LIKE ? OR person LIKE ?)'
            args.extend([f'%{keyword}%', f'%{keyword}%'])
        if memorial_type:
            sql += ' AND memorial_type = ?'
            args.append(memorial_type)
        if group:
            sql += ' AND group_name = ?'
            args.append(group)
        sql += ' ORDER BY created_at DESC, id DESC'

        conn = self._get_conn()
        try:
            return [dict(row) for row in conn.execute(sql, args).fetchall()]
        finally:
            conn.close()

    def get_memorial(self, memorial_id):
        conn = self._get_conn()
        try:
            row = conn.execute('SELECT * FROM memorials WHERE id = ?', (memorial_id,)).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def create_memorial(self, data):
        record, error = self._normalize_memorial(data)
        if error:
            return {'status': 'error', 'message': error}

        now = datetime.now().isoformat()
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO memorials (
                    name, memorial_type, date_mode, solar_date, lunar_month,
                    lunar_day, lunar_leap, start_year, person, group_name, note,
                    recurring, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', tuple(record[f] for f in MEMORIAL_FIELDS) + (now, now))
            conn.commit()
            memorial_id = cursor.lastrowid
        finally:
            conn.close()

        logger.info(f"[Memorials] Created #{memorial_id} {record['name']}")
        return {'status': 'success', 'data': self.get_memorial(memorial_id)}

    def update_memorial(self, memorial_id, data):
        """Merge the given fields over the stored row, then re-validate the whole record."""
        existing = self.get_memorial(memorial_id)
        if not existing:
            return {'status': 'not_found', 'message': 'Memorial not found'}

        merged = {f: existing[f] for f in MEMORIAL_FIELDS}
        merged.update({k: v for k, v in data.items() if k in MEMORIAL_FIELDS})
        record, error = self._normalize_memorial(merged)
        if error:
            return {'status': 'error', 'message': error}

        conn = self._get_conn()
        try:
            assignments = ', '.join(f'{f} = ?' for f in MEMORIAL_FIELDS)
            conn.execute(
                f'UPDATE memorials SET {assignments}, updated_at = ? WHERE id = ?',
                tuple(record[f] for f in MEMORIAL_FIELDS) + (datetime.now().isoformat(), memorial_id),
            )
            conn.commit()
        finally:
            conn.close()

        return {'status': 'success', 'data': self.get_memorial(memorial_id)}

    def delete_memorial(self, memorial_id):
        """Delete a memorial together with its reminder rules."""
        conn = self._get_conn()
        try:
            conn.execute('DELETE FROM reminders WHERE memorial_id = ?', (memorial_id,))
            cursor = conn.execute('DELETE FROM memorials WHERE id = ?', (memorial_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            conn.close()

        if not deleted:
            return {'status': 'not_found', 'message': 'Memorial not found'}
        logger.info(f"[Memorials] Deleted #{memorial_id}")
        return {'status': 'success'}

    def list_groups(self):
        conn = self._get_conn()
        try:
            rows = conn.execute('''
                SELECT DISTINCT group_name FROM memorials
                WHERE group_name IS NOT NULL AND group_name != ''
                ORDER BY group_name
            ''').fetchall()
            return [row['group_name'] for row in rows]
        finally:
            conn.close()

    # ── Reminder rules ────────────────────────────────────────

    def _validate_reminder(self, days_before, channel):
        if channel not in CHANNELS:
            return 'Invalid channel, supported: email / telegram'
        if isinstance(days_before, bool):
            return 'Lead time must be a whole number of days'
        try:
            days_before = int(days_before)
        except (TypeError, ValueError):
            return 'Lead time must be a whole number of days'
        if days_before < 0:
            return 'Lead time cannot be negative'
        return None

    def get_reminder(self, reminder_id):
        conn = self._get_conn()
        try:
            row = conn.execute('SELECT * FROM reminders WHERE id = ?', (reminder_id,)).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def list_reminders(self, memorial_id):
        conn = self._get_conn()
        try:
            rows = conn.execute(
                'SELECT * FROM reminders WHERE memorial_id = ? ORDER BY days_before, id',
                (memorial_id,),
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def list_enabled_reminders(self):
        """All enabled rules, for the daily job."""
        conn = self._get_conn()
        try:
            rows = conn.execute('SELECT * FROM reminders WHERE enabled = 1 ORDER BY id').fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def list_all_with_reminders(self):
        """Every memorial (by name) with its rules nested under 'reminders'."""
        conn = self._get_conn()
        try:
            memorials = [dict(row) for row in conn.execute('SELECT * FROM memorials ORDER BY name').fetchall()]
            reminders = [dict(row) for row in conn.execute('SELECT * FROM reminders ORDER BY days_before, id').fetchall()]
        finally:
            conn.close()

        by_memorial = {}
        for reminder in reminders:
            by_memorial.setdefault(reminder['memorial_id'], []).append(reminder)
        for memorial in memorials:
            memorial['reminders'] = by_memorial.get(memorial['id'], [])
        return memorials

    def create_reminder(self, memorial_id, data):
        days_before = data.get('days_before', 0)
        if days_before is None:
            days_before = 0
        channel = data.get('channel')
        error = self._validate_reminder(days_before, channel)
        if error:
            return {'status': 'error', 'message': error}
        if not self.get_memorial(memorial_id):
            return {'status': 'not_found', 'message': 'Memorial not found'}

        now = datetime.now().isoformat()
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO reminders (memorial_id, days_before, channel, enabled, created_at)
                VALUES (?, ?, ?, 1, ?)
            ''', (memorial_id, int(days_before), channel, now))
            conn.commit()
            reminder_id = cursor.lastrowid
        finally:
            conn.close()

        return {'status': 'success', 'data': self.get_reminder(reminder_id)}

    def update_reminder(self, reminder_id, data):
        """Change lead time, channel or the enabled flag of one rule."""
        existing = self.get_reminder(reminder_id)
        if not existing:
            return {'status': 'not_found', 'message': 'Reminder rule not found'}

        days_before = data.get('days_before', existing['days_before'])
        channel = data.get('channel', existing['channel'])
        error = self._validate_reminder(days_before, channel)
        if error:
            return {'status': 'error', 'message': error}
        enabled = existing['enabled']
        if 'enabled' in data:
            enabled = 1 if data['enabled'] else 0

        conn = self._get_conn()
        try:
            conn.execute(
                'UPDATE reminders SET days_before = ?, channel = ?, enabled = ? WHERE id = ?',
                (int(days_before), channel, enabled, reminder_id),
            )
            conn.commit()
        finally:
            conn.close()

        return {'status': 'success', 'data': self.get_reminder(reminder_id)}

    def delete_reminder(self, reminder_id):
        conn = self._get_conn()
        try:
            cursor = conn.execute('DELETE FROM reminders WHERE id = ?', (reminder_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            conn.close()

        if not deleted:
            return {'status': 'not_found', 'message': 'Reminder rule not found'}
        return {'status': 'success'}

    # ── Notification log ──────────────────────────────────────

    def insert_log(self, memorial_id, channel, status, message=None):
        """Append one dispatch outcome. Rows are never updated afterwards."""
        if status not in LOG_STATUSES:
            raise ValueError(f'Unknown log status: {status}')
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO notification_logs (memorial_id, channel, status, message, sent_at)
                VALUES (?, ?, ?, ?, ?)
            ''', (memorial_id, channel, status, message, datetime.now().isoformat()))
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def list_logs(self, limit=100):
        """Newest first. memorial_name is None once the memorial is deleted."""
        conn = self._get_conn()
        try:
            rows = conn.execute('''
                SELECT l.*, m.name AS memorial_name
                FROM notification_logs l
                LEFT JOIN memorials m ON m.id = l.memorial_id
                ORDER BY l.sent_at DESC, l.id DESC
                LIMIT ?
            ''', (limit,)).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()
