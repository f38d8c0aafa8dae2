#!/usr/bin/env python3
"""
MemorialHub API Server
JSON API for memorials, reminder rules, notification settings and statistics.
Runs the daily reminder job in-process via APScheduler.
"""

from http.server import HTTPServer, BaseHTTPRequestHandler
import hmac
import json
import os
from urllib.parse import urlparse, parse_qs
import logging

import time as _time_module

from auth_manager import AuthManager
from database_setup import MemorialHubDatabase
from lunar_calendar import MAX_YEAR, MIN_YEAR, month_calendar, today_info, year_supported
from memorial_manager import MemorialManager
from notifier import NotificationError, send_email, send_telegram
from reminder_processor import BEIJING_TZ, beijing_today, process_reminders
from settings_store import (
    SettingsStore, EMAIL_REQUIRED_KEYS, TELEGRAM_REQUIRED_KEYS, missing_keys,
)
from statistics_manager import StatisticsManager

logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')

DB_PATH = os.environ.get('DATABASE_PATH', 'memorialhub.db')
REMINDER_HOUR = int(os.environ.get('REMINDER_HOUR', 9))  # Beijing time

RESULT_STATUS_CODES = {
    'success': 200,
    'error': 400,
    'unauthorized': 401,
    'not_found': 404,
}

# Managers are cheap but create tables on init; keep one set per DB path
_managers_cache = {}


def get_managers(db_path=None):
    db_path = db_path or DB_PATH
    managers = _managers_cache.get(db_path)
    if managers is None:
        settings = SettingsStore(db_path)
        managers = {
            'settings': settings,
            'auth': AuthManager(db_path, settings=settings),
            'memorials': MemorialManager(db_path),
            'stats': StatisticsManager(db_path),
        }
        _managers_cache[db_path] = managers
    return managers


def _parse_id(value):
    """Path segment -> positive int, or None."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


class MemorialHubAPIHandler(BaseHTTPRequestHandler):

    PUBLIC_PATHS = ('/api/health', '/api/auth/status', '/api/auth/setup', '/api/auth/login')

    # ── Dispatch ──────────────────────────────────────────────

    def do_GET(self):
        """Handle GET requests"""
        self._handle('GET')

    def do_POST(self):
        """Handle POST requests"""
        self._handle('POST')

    def do_PUT(self):
        """Handle PUT requests"""
        self._handle('PUT')

    def do_DELETE(self):
        """Handle DELETE requests"""
        self._handle('DELETE')

    def do_OPTIONS(self):
        """Handle CORS preflight requests"""
        self.send_response(200)
        self.send_cors_headers()
        self.end_headers()

    def _handle(self, method):
        _req_start = _time_module.time()
        parsed_path = urlparse(self.path)
        path = parsed_path.path.rstrip('/') or '/'
        self.query_params = parse_qs(parsed_path.query)
        self._status_sent = 200

        try:
            body = None
            if method in ('POST', 'PUT'):
                body = self._read_json_body()
                if body is None:
                    self.send_json_response({'status': 'error', 'message': 'Invalid JSON'}, 400)
                    return

            if path == '/api/health':
                self._handle_health_check()
            elif path == '/api/cron':
                self.handle_cron()
            elif path.startswith('/api/auth/'):
                self.route_auth(method, path, body)
            elif not path.startswith('/api/'):
                self.send_404()
            elif not self._check_session():
                self.send_json_response({'status': 'error', 'message': 'Not logged in or session expired'}, 401)
            elif path.startswith('/api/memorials'):
                self.route_memorials(method, path, body)
            elif path.startswith('/api/notifications/'):
                self.route_notifications(method, path, body)
            elif path.startswith('/api/dashboard/'):
                self.route_dashboard(method, path)
            elif path.startswith('/api/settings/'):
                self.route_settings(method, path, body)
            elif path.startswith('/api/statistics/'):
                self.route_statistics(method, path)
            elif path.startswith('/api/calendar/'):
                self.route_calendar(method, path)
            else:
                self.send_404()
        except Exception as e:
            logging.exception(f"[API] Unhandled error on {method} {path}")
            self.send_error_response(e, 500)
        finally:
            self._log_request(method, path, self._status_sent, _req_start)

    def _read_json_body(self):
        """Parsed JSON object, {} for an empty body, None when malformed."""
        content_length = int(self.headers.get('Content-Length', 0) or 0)
        raw = self.rfile.read(content_length) if content_length > 0 else b''
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw.decode('utf-8'))
        except (ValueError, UnicodeDecodeError):
            return None
        return data if isinstance(data, dict) else None

    # ── Auth ──────────────────────────────────────────────────

    def _bearer_token(self):
        auth = self.headers.get('Authorization', '')
        if not auth.startswith('Bearer '):
            return None
        return auth[len('Bearer '):].strip()

    def _check_session(self):
        return get_managers()['auth'].verify_token(self._bearer_token())

    def route_auth(self, method, path, body):
        auth = get_managers()['auth']
        if method == 'GET' and path == '/api/auth/status':
            self.send_result(auth.status())
        elif method == 'POST' and path == '/api/auth/setup':
            self.send_result(auth.setup(body.get('password'), body.get('site_name')))
        elif method == 'POST' and path == '/api/auth/login':
            self.send_result(auth.login(body.get('password')))
        elif method == 'POST' and path == '/api/auth/change-password':
            if not self._check_session():
                self.send_json_response({'status': 'error', 'message': 'Not logged in or session expired'}, 401)
                return
            self.send_result(auth.change_password(body.get('old_password'), body.get('new_password')))
        else:
            self.send_404()

    # ── Memorials ─────────────────────────────────────────────

    def route_memorials(self, method, path, body):
        memorials = get_managers()['memorials']

        if path == '/api/memorials':
            if method == 'GET':
                data = memorials.list_memorials(
                    keyword=self._query('keyword'),
                    memorial_type=self._query('memorial_type'),
                    group=self._query('group'),
                )
                self.send_json_response({'status': 'success', 'data': data, 'count': len(data)})
            elif method == 'POST':
                self.send_result(memorials.create_memorial(body), success_status=201)
            else:
                self.send_404()
            return

        if path == '/api/memorials/groups' and method == 'GET':
            self.send_json_response({'status': 'success', 'data': memorials.list_groups()})
            return

        memorial_id = _parse_id(path[len('/api/memorials/'):])
        if memorial_id is None:
            self.send_404()
        elif method == 'GET':
            item = memorials.get_memorial(memorial_id)
            if item:
                self.send_json_response({'status': 'success', 'data': item})
            else:
                self.send_json_response({'status': 'error', 'message': 'Memorial not found'}, 404)
        elif method == 'PUT':
            self.send_result(memorials.update_memorial(memorial_id, body))
        elif method == 'DELETE':
            self.send_result(memorials.delete_memorial(memorial_id))
        else:
            self.send_404()

    # ── Notifications ─────────────────────────────────────────

    def route_notifications(self, method, path, body):
        managers = get_managers()
        memorials = managers['memorials']

        if path == '/api/notifications/logs' and method == 'GET':
            limit = _parse_id(self._query('limit')) or 100
            self.send_json_response({'status': 'success', 'data': memorials.list_logs(min(limit, 1000))})
        elif path == '/api/notifications/settings':
            if method == 'GET':
                self.send_json_response({'status': 'success', 'data': managers['settings'].get_notification_settings()})
            elif method == 'POST':
                self.send_result(managers['settings'].save_notification_settings(body))
            else:
                self.send_404()
        elif path == '/api/notifications/test-email' and method == 'POST':
            self.handle_test_email()
        elif path == '/api/notifications/test-telegram' and method == 'POST':
            self.handle_test_telegram()
        elif path == '/api/notifications/reminders/all' and method == 'GET':
            self.send_json_response({'status': 'success', 'data': memorials.list_all_with_reminders()})
        elif path.startswith('/api/notifications/reminders/rule/'):
            reminder_id = _parse_id(path[len('/api/notifications/reminders/rule/'):])
            if reminder_id is None:
                self.send_404()
            elif method == 'PUT':
                self.send_result(memorials.update_reminder(reminder_id, body))
            elif method == 'DELETE':
                self.send_result(memorials.delete_reminder(reminder_id))
            else:
                self.send_404()
        elif path.startswith('/api/notifications/reminders/'):
            memorial_id = _parse_id(path[len('/api/notifications/reminders/'):])
            if memorial_id is None:
                self.send_404()
            elif method == 'GET':
                self.send_json_response({'status': 'success', 'data': memorials.list_reminders(memorial_id)})
            elif method == 'POST':
                self.send_result(memorials.create_reminder(memorial_id, body), success_status=201)
            else:
                self.send_404()
        else:
            self.send_404()

    def handle_test_email(self):
        """POST /api/notifications/test-email — send a test message with the saved SMTP settings."""
        settings = get_managers()['settings'].get_all()
        if missing_keys(settings, EMAIL_REQUIRED_KEYS):
            self.send_json_response({'status': 'error', 'message': 'Incomplete configuration for email'}, 400)
            return
        try:
            send_email(
                settings['smtp_host'], settings['smtp_port'], settings['smtp_user'],
                settings['smtp_pass'], settings['notify_email'],
                'MemorialHub test email',
                '🎉 Email notifications are configured.\n\nThis is a test message from MemorialHub.',
            )
        except (NotificationError, ValueError) as e:
            self.send_json_response({'status': 'error', 'message': f'Send failed: {e}'}, 400)
            return
        self.send_json_response({'status': 'success', 'message': 'Test email sent'})

    def handle_test_telegram(self):
        """POST /api/notifications/test-telegram"""
        settings = get_managers()['settings'].get_all()
        if missing_keys(settings, TELEGRAM_REQUIRED_KEYS):
            self.send_json_response({'status': 'error', 'message': 'Incomplete configuration for Telegram'}, 400)
            return
        try:
            send_telegram(settings['telegram_bot_token'], settings['telegram_chat_id'],
                          '🎉 <b>MemorialHub test message</b>\n\nTelegram notifications are configured!')
        except NotificationError as e:
            self.send_json_response({'status': 'error', 'message': f'Send failed: {e}'}, 400)
            return
        self.send_json_response({'status': 'success', 'message': 'Test message sent'})

    # ── Dashboard / statistics / settings / calendar ──────────

    def route_dashboard(self, method, path):
        stats = get_managers()['stats']
        if method != 'GET':
            self.send_404()
        elif path == '/api/dashboard/stats':
            self.send_json_response({'status': 'success', 'data': stats.dashboard_stats()})
        elif path in ('/api/dashboard/upcoming', '/api/dashboard/all-memorials'):
            limit = _parse_id(self._query('limit'))
            self.send_json_response({'status': 'success', 'data': stats.upcoming(beijing_today(), limit)})
        else:
            self.send_404()

    def route_statistics(self, method, path):
        stats = get_managers()['stats']
        handlers = {
            '/api/statistics/overview': stats.overview,
            '/api/statistics/by-type': stats.by_type,
            '/api/statistics/by-month': stats.by_month,
            '/api/statistics/notify-stats': stats.notify_stats,
        }
        handler = handlers.get(path)
        if method != 'GET' or handler is None:
            self.send_404()
            return
        self.send_json_response({'status': 'success', 'data': handler()})

    def route_settings(self, method, path, body):
        settings = get_managers()['settings']
        if path != '/api/settings/profile':
            self.send_404()
        elif method == 'GET':
            self.send_json_response({'status': 'success', 'data': settings.get_profile()})
        elif method == 'POST':
            self.send_result(settings.save_profile(body))
        else:
            self.send_404()

    def route_calendar(self, method, path):
        lang = self._query('lang') or 'en'
        if method != 'GET':
            self.send_404()
        elif path == '/api/calendar/today':
            self.send_json_response({'status': 'success', 'data': today_info(beijing_today(), lang)})
        elif path == '/api/calendar/month':
            today = beijing_today()
            year = _parse_id(self._query('year')) or today.year
            month = _parse_id(self._query('month')) or today.month
            if not 1 <= month <= 12:
                self.send_json_response({'status': 'error', 'message': 'Month must be between 1 and 12'}, 400)
                return
            if not year_supported(year):
                self.send_json_response({'status': 'error',
                                         'message': f'Year must be between {MIN_YEAR} and {MAX_YEAR}'}, 400)
                return
            self.send_json_response({
                'status': 'success',
                'year': year,
                'month': month,
                'data': month_calendar(year, month, lang),
            })
        else:
            self.send_404()

    # ── Cron trigger ──────────────────────────────────────────

    def handle_cron(self):
        """GET /api/cron — run the reminder job once.
        Guarded by CRON_SECRET when set, otherwise by the session token.
        """
        cron_secret = os.environ.get('CRON_SECRET')
        token = self._bearer_token() or ''
        if cron_secret:
            authorized = hmac.compare_digest(token, cron_secret)
        else:
            authorized = self._check_session()
        if not authorized:
            self.send_json_response({'status': 'error', 'message': 'Unauthorized'}, 401)
            return
        summary = process_reminders(DB_PATH)
        self.send_json_response({'status': 'success', 'data': summary})

    # ── Helpers ──────────────────────────────────────────────

    def _query(self, name):
        value = self.query_params.get(name, [None])[0]
        return value.strip() if value and value.strip() else None

    def send_cors_headers(self):
        """Send CORS headers"""
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, POST, PUT, DELETE, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type, Authorization')

    def send_json_response(self, data, status=200):
        """Send JSON response"""
        self._status_sent = status
        payload = json.dumps(data, ensure_ascii=False, indent=2).encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'application/json; charset=utf-8')
        self.send_header('Content-Length', str(len(payload)))
        self.send_cors_headers()
        self.end_headers()
        self.wfile.write(payload)

    def send_result(self, result, success_status=200):
        """Send a manager result dict with the matching HTTP status."""
        status = RESULT_STATUS_CODES.get(result.get('status'), 500)
        if status == 200:
            status = success_status
        self.send_json_response(result, status)

    def send_error_response(self, message, status=500):
        """Send error response with friendly message for 500s"""
        if status >= 500:
            logging.error(f"[API] Server error: {message}")
            friendly = self._friendly_error(message)
        else:
            friendly = str(message)
        self.send_json_response({'status': 'error', 'message': friendly}, status)

    def send_404(self):
        """Send 404 response"""
        self.send_error_response('Endpoint not found', 404)

    def _friendly_error(self, raw_message):
        """Convert technical error messages to user-friendly text."""
        msg = str(raw_message).lower()
        if 'database is locked' in msg:
            return 'The server is busy. Please try again in a moment.'
        if 'sqlite' in msg or 'no such table' in msg:
            return 'A database error occurred. Please try again later.'
        return 'Something went wrong. Please try again.'

    def _log_request(self, method, path, status, start_time):
        """Log request with method, path, status code, and response time."""
        elapsed_ms = (_time_module.time() - start_time) * 1000
        logging.info(f"[API] {method} {path} {status} {elapsed_ms:.0f}ms")

    def _handle_health_check(self):
        """GET /api/health — returns service status with counts."""
        try:
            counts = MemorialHubDatabase(DB_PATH).get_table_counts()
        except Exception as e:
            logging.error(f"[API] Health check could not read counts: {e}")
            counts = {}
        self.send_json_response({
            'status': 'ok',
            'memorials': counts.get('memorials', 0),
            'reminders': counts.get('reminders', 0),
        })

    def log_message(self, format, *args):
        # Requests are logged by _log_request
        pass


def start_scheduler(db_path=None, hour=None):
    """Run the reminder job once a day at `hour` o'clock Beijing time."""
    from apscheduler.schedulers.background import BackgroundScheduler

    db_path = db_path or DB_PATH
    hour = REMINDER_HOUR if hour is None else hour
    scheduler = BackgroundScheduler(daemon=True, timezone=BEIJING_TZ)
    scheduler.add_job(
        process_reminders,
        'cron',
        hour=hour,
        minute=0,
        args=[db_path],
        id='daily_reminders',
        name='Send memorial reminders',
        max_instances=1,
    )
    scheduler.start()
    logging.info(f"[Reminders] Scheduler started (daily at {hour:02d}:00 Asia/Shanghai)")
    return scheduler


def run_server(port=None):
    """Start the API server"""
    if port is None:
        port = int(os.environ.get('PORT', 5000))

    MemorialHubDatabase(DB_PATH).create_tables()
    httpd = HTTPServer(('0.0.0.0', port), MemorialHubAPIHandler)

    scheduler = None
    try:
        scheduler = start_scheduler()
    except Exception as e:
        logging.error(f"[Reminders] Scheduler failed to start: {e}")

    logging.info(f"\n{'='*60}")
    logging.info(f" MEMORIALHUB API SERVER")
    logging.info(f"{'='*60}")
    logging.info(f"\n Running on: http://0.0.0.0:{port}")
    logging.info(f" Database: {os.path.abspath(DB_PATH)}")
    logging.info(f"\n API Endpoints:")
    logging.info(f" GET  /api/health - Service status")
    logging.info(f" GET  /api/auth/status | POST /api/auth/setup, /login, /change-password")
    logging.info(f" GET/POST /api/memorials - List / create memorials")
    logging.info(f" GET/PUT/DELETE /api/memorials/{{id}} - Single memorial")
    logging.info(f" GET  /api/memorials/groups - Group names")
    logging.info(f" GET/POST /api/notifications/reminders/{{memorial_id}} - Reminder rules")
    logging.info(f" PUT/DELETE /api/notifications/reminders/rule/{{id}} - Single rule")
    logging.info(f" GET  /api/notifications/logs - Notification history")
    logging.info(f" GET/POST /api/notifications/settings - Channel credentials")
    logging.info(f" POST /api/notifications/test-email, /test-telegram")
    logging.info(f" GET  /api/dashboard/stats, /upcoming")
    logging.info(f" GET  /api/statistics/overview, /by-type, /by-month, /notify-stats")
    logging.info(f" GET  /api/calendar/today, /month")
    logging.info(f" GET  /api/cron - Run the reminder job now")
    logging.info(f"\n Press Ctrl+C to stop")
    logging.info(f"{'='*60}\n")

    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        logging.info("\n\n Server stopped")
        httpd.shutdown()
        if scheduler:
            scheduler.shutdown(wait=False)


if __name__ == '__main__':
    run_server()
