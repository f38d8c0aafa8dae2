#!/usr/bin/env python3
"""
MemorialHub Settings Store
Flat key-value settings: credentials, session token and site preferences.
"""

import logging

from database_setup import MemorialHubDatabase, get_connection

logger = logging.getLogger(__name__)

# Keys the notification settings form may write (smtp_pass is handled apart)
NOTIFICATION_KEYS = (
    'smtp_host', 'smtp_port', 'smtp_user', 'notify_email',
    'telegram_bot_token', 'telegram_chat_id',
)

EMAIL_REQUIRED_KEYS = ('smtp_host', 'smtp_port', 'smtp_user', 'smtp_pass', 'notify_email')
TELEGRAM_REQUIRED_KEYS = ('telegram_bot_token', 'telegram_chat_id')

DEFAULT_NICKNAME = 'MemorialHub user'
DEFAULT_REGION = 'north'


def missing_keys(settings, required):
    """Return the required keys that are absent or empty in a settings snapshot."""
    return [key for key in required if not settings.get(key)]


class SettingsStore:
    def __init__(self, db_path='memorialhub.db'):
        self.db_path = db_path
        MemorialHubDatabase(db_path).create_tables()

    def _get_conn(self):
        return get_connection(self.db_path)

    # ── Raw access ────────────────────────────────────────────

    def get(self, key):
        conn = self._get_conn()
        try:
            row = conn.execute('SELECT value FROM settings WHERE key = ?', (key,)).fetchone()
            return row['value'] if row else None
        finally:
            conn.close()

    def set(self, key, value):
        """Insert or replace a single setting."""
        conn = self._get_conn()
        try:
            conn.execute('INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)',
                         (key, None if value is None else str(value)))
            conn.commit()
        finally:
            conn.close()

    def get_all(self):
        """Snapshot of every setting as a flat dict."""
        conn = self._get_conn()
        try:
            rows = conn.execute('SELECT key, value FROM settings').fetchall()
            return {row['key']: row['value'] for row in rows}
        finally:
            conn.close()

    # ── Notification settings ─────────────────────────────────

    def get_notification_settings(self):
        """Public view of channel credentials. The SMTP password never leaves the store."""
        all_settings = self.get_all()
        port = all_settings.get('smtp_port')
        try:
            port = int(port) if port else None
        except ValueError:
            port = None
        return {
            'smtp_host': all_settings.get('smtp_host'),
            'smtp_port': port,
            'smtp_user': all_settings.get('smtp_user'),
            'has_smtp_pass': bool(all_settings.get('smtp_pass')),
            'notify_email': all_settings.get('notify_email'),
            'telegram_bot_token': all_settings.get('telegram_bot_token'),
            'telegram_chat_id': all_settings.get('telegram_chat_id'),
        }

    def save_notification_settings(self, data):
        """Write the known keys present in data. An empty smtp_pass keeps the stored one."""
        saved = []
        for key in NOTIFICATION_KEYS:
            if data.get(key) is not None:
                self.set(key, data[key])
                saved.append(key)
        if data.get('smtp_pass'):
            self.set('smtp_pass', data['smtp_pass'])
            saved.append('smtp_pass')
        logger.info(f"[Settings] Notification settings saved: {', '.join(saved) or 'nothing'}")
        return {'status': 'success', 'saved': saved}

    # ── Profile ───────────────────────────────────────────────

    def get_profile(self):
        return {
            'nickname': self.get('nickname') or DEFAULT_NICKNAME,
            'region': self.get('region') or DEFAULT_REGION,
        }

    def save_profile(self, data):
        if data.get('nickname'):
            self.set('nickname', str(data['nickname'])[:100].strip())
        if data.get('region'):
            self.set('region', str(data['region'])[:50].strip())
        return {'status': 'success'}
