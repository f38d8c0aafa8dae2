#!/usr/bin/env python3
"""
MemorialHub Database Setup
Creates and manages the SQLite database for memorials, reminder rules,
notification logs and key-value settings.
"""

import sqlite3
import os


class MemorialHubDatabase:
    def __init__(self, db_path=None):
        """Initialize database connection"""
        self.db_path = db_path or os.environ.get('DATABASE_PATH', 'memorialhub.db')
        self.conn = None
        self.cursor = None

    def connect(self):
        """Establish database connection"""
        self.conn = get_connection(self.db_path)
        self.cursor = self.conn.cursor()

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.commit()
            self.conn.close()
            self.conn = None

    def create_tables(self):
        """Create all necessary tables with proper schema"""
        self.connect()

        # Memorials: one recurring date each, solar (MM-DD) or lunar (month/day/leap)
        self.cursor.execute('''
            CREATE TABLE IF NOT EXISTS memorials (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                memorial_type TEXT NOT NULL DEFAULT 'custom',
                date_mode TEXT NOT NULL DEFAULT 'solar'
                    CHECK (date_mode IN ('solar', 'lunar')),
                solar_date TEXT,
                lunar_month INTEGER,
                lunar_day INTEGER,
                lunar_leap INTEGER NOT NULL DEFAULT 0,
                start_year INTEGER,
                person TEXT,
                group_name TEXT,
                note TEXT,
                recurring INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        # Reminder rules, removed together with their memorial
        self.cursor.execute('''
            CREATE TABLE IF NOT EXISTS reminders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                memorial_id INTEGER NOT NULL,
                days_before INTEGER NOT NULL DEFAULT 0 CHECK (days_before >= 0),
                channel TEXT NOT NULL CHECK (channel IN ('email', 'telegram')),
                enabled INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                FOREIGN KEY (memorial_id) REFERENCES memorials(id) ON DELETE CASCADE
            )
        ''')

        # Append-only dispatch history (no FK: history outlives the memorial)
        self.cursor.execute('''
            CREATE TABLE IF NOT EXISTS notification_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                memorial_id INTEGER NOT NULL,
                channel TEXT NOT NULL,
                status TEXT NOT NULL,
                message TEXT,
                sent_at TEXT NOT NULL
            )
        ''')

        self.cursor.execute('''
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        ''')

        # Create indexes for performance
        self.cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_memorials_group
            ON memorials(group_name)
        ''')

        self.cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_reminders_memorial
            ON reminders(memorial_id)
        ''')

        self.cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_reminders_enabled
            ON reminders(enabled)
        ''')

        self.cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_logs_sent_at
            ON notification_logs(sent_at DESC)
        ''')

        self.conn.commit()
        self.close()

    def get_table_counts(self):
        """Row counts per table, used by the health check"""
        self.connect()
        counts = {}
        for table in ('memorials', 'reminders', 'notification_logs'):
            self.cursor.execute(f'SELECT COUNT(*) FROM {table}')
            counts[table] = self.cursor.fetchone()[0]
        self.close()
        return counts


def get_connection(db_path):
    """Open a connection with dict-like rows and FK enforcement on."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def initialize_database():
    """Create database and tables if they don't exist"""
    db_path = os.environ.get('DATABASE_PATH', 'memorialhub.db')
    db = MemorialHubDatabase(db_path)
    db.create_tables()
    print("✅ Database initialized successfully")
    print(f"   Location: {os.path.abspath(db.db_path)}")


if __name__ == '__main__':
    initialize_database()
