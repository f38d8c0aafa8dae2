#!/usr/bin/env python3
"""
MemorialHub Auth Manager
Single-user password protection. The password hash and the one live
session token are stored in the settings table.
"""

import hashlib
import hmac
import logging
import secrets

from settings_store import SettingsStore

logger = logging.getLogger(__name__)

PASSWORD_SALT = '_memorial_hub_salt'
MIN_PASSWORD_LENGTH = 6
DEFAULT_SITE_NAME = 'MemorialHub'


def hash_password(password):
    """Salted SHA-256 hex digest."""
    return hashlib.sha256((password + PASSWORD_SALT).encode('utf-8')).hexdigest()


def generate_token():
    return secrets.token_hex(32)


class AuthManager:
    def __init__(self, db_path='memorialhub.db', settings=None):
        self.settings = settings or SettingsStore(db_path)

    def _issue_token(self):
        """Rotate the session token; any previous token stops working."""
        token = generate_token()
        self.settings.set('session_token', token)
        return token

    def status(self):
        return {
            'status': 'success',
            'initialized': bool(self.settings.get('password_hash')),
            'site_name': self.settings.get('site_name') or DEFAULT_SITE_NAME,
        }

    def setup(self, password, site_name=None):
        """First-run initialization. Only allowed once."""
        if self.settings.get('password_hash'):
            return {'status': 'error', 'message': 'Already initialized'}
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            return {'status': 'error', 'message': f'Password must be at least {MIN_PASSWORD_LENGTH} characters'}

        self.settings.set('password_hash', hash_password(password))
        self.settings.set('site_name', (site_name or DEFAULT_SITE_NAME)[:100])
        logger.info("[Auth] Site initialized")
        return {'status': 'success', 'token': self._issue_token()}

    def login(self, password):
        stored_hash = self.settings.get('password_hash')
        if not stored_hash:
            return {'status': 'error', 'message': 'Please initialize first'}
        if not password or not hmac.compare_digest(hash_password(password), stored_hash):
            logger.warning("[Auth] Failed login attempt")
            return {'status': 'unauthorized', 'message': 'Incorrect password'}
        return {'status': 'success', 'token': self._issue_token()}

    def change_password(self, old_password, new_password):
        stored_hash = self.settings.get('password_hash')
        if not stored_hash:
            return {'status': 'error', 'message': 'Not initialized'}
        if not old_password or not hmac.compare_digest(hash_password(old_password), stored_hash):
            return {'status': 'unauthorized', 'message': 'Old password is incorrect'}
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            return {'status': 'error', 'message': f'New password must be at least {MIN_PASSWORD_LENGTH} characters'}

        self.settings.set('password_hash', hash_password(new_password))
        logger.info("[Auth] Password changed, session rotated")
        return {'status': 'success', 'token': self._issue_token()}

    def verify_token(self, token):
        stored = self.settings.get('session_token')
        if not token or not stored:
            return False
        return hmac.compare_digest(token, stored)
