#!/usr/bin/env python3
"""
MemorialHub Statistics
Read-only aggregate queries for the dashboard and statistics pages.
"""

from database_setup import MemorialHubDatabase, get_connection
from date_matcher import next_occurrence


class StatisticsManager:
    def __init__(self, db_path='memorialhub.db'):
        self.db_path = db_path
        MemorialHubDatabase(db_path).create_tables()

    def _get_conn(self):
        return get_connection(self.db_path)

    def _count(self, conn, sql, args=()):
        return conn.execute(sql, args).fetchone()[0] or 0

    def dashboard_stats(self):
        conn = self._get_conn()
        try:
            return {
                'total_memorials': self._count(conn, 'SELECT COUNT(*) FROM memorials'),
                'birthday_count': self._count(conn, "SELECT COUNT(*) FROM memorials WHERE memorial_type = 'birthday'"),
                'anniversary_count': self._count(conn, "SELECT COUNT(*) FROM memorials WHERE memorial_type = 'anniversary'"),
                'group_count': self._count(conn, '''
                    SELECT COUNT(DISTINCT group_name) FROM memorials
                    WHERE group_name IS NOT NULL AND group_name != ''
                '''),
            }
        finally:
            conn.close()

    def upcoming(self, today, limit=None):
        """Memorials ordered by days until their next occurrence.
        Memorials whose date cannot be resolved sort last with days_until None.
        """
        conn = self._get_conn()
        try:
            rows = [dict(row) for row in conn.execute('''
                SELECT id, name, memorial_type, date_mode, solar_date, lunar_month,
                       lunar_day, lunar_leap, start_year, person, group_name
                FROM memorials
            ''').fetchall()]
        finally:
            conn.close()

        for row in rows:
            occurrence = next_occurrence(row, today)
            row['next_date'] = occurrence.isoformat() if occurrence else None
            row['days_until'] = (occurrence - today).days if occurrence else None

        rows.sort(key=lambda r: (r['days_until'] is None, r['days_until'] or 0, r['name']))
        return rows[:limit] if limit else rows

    def overview(self):
        conn = self._get_conn()
        try:
            return {
                'total': self._count(conn, 'SELECT COUNT(*) FROM memorials'),
                'solar_count': self._count(conn, "SELECT COUNT(*) FROM memorials WHERE date_mode = 'solar'"),
                'lunar_count': self._count(conn, "SELECT COUNT(*) FROM memorials WHERE date_mode = 'lunar'"),
                'recurring_count': self._count(conn, 'SELECT COUNT(*) FROM memorials WHERE recurring = 1'),
                'group_count': self._count(conn, '''
                    SELECT COUNT(DISTINCT group_name) FROM memorials
                    WHERE group_name IS NOT NULL AND group_name != ''
                '''),
            }
        finally:
            conn.close()

    def by_type(self):
        conn = self._get_conn()
        try:
            rows = conn.execute('''
                SELECT memorial_type, COUNT(*) AS count FROM memorials
                GROUP BY memorial_type ORDER BY memorial_type
            ''').fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def by_month(self):
        """Solar memorials per month, always 12 buckets."""
        conn = self._get_conn()
        try:
            rows = conn.execute('''
                SELECT CAST(SUBSTR(solar_date, 1, 2) AS INTEGER) AS month, COUNT(*) AS count
                FROM memorials
                WHERE date_mode = 'solar' AND solar_date IS NOT NULL
                GROUP BY month
            ''').fetchall()
        finally:
            conn.close()

        counts = {row['month']: row['count'] for row in rows}
        return [{'month': m, 'count': counts.get(m, 0)} for m in range(1, 13)]

    def notify_stats(self):
        conn = self._get_conn()
        try:
            return {
                'total_sent': self._count(conn, 'SELECT COUNT(*) FROM notification_logs'),
                'success_count': self._count(conn, "SELECT COUNT(*) FROM notification_logs WHERE status = 'success'"),
                'failed_count': self._count(conn, "SELECT COUNT(*) FROM notification_logs WHERE status = 'failed'"),
                'email_count': self._count(conn, "SELECT COUNT(*) FROM notification_logs WHERE channel = 'email'"),
                'telegram_count': self._count(conn, "SELECT COUNT(*) FROM notification_logs WHERE channel = 'telegram'"),
            }
        finally:
            conn.close()
