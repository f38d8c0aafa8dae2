#!/usr/bin/env python3
"""
MemorialHub Notification Dispatchers
One synchronous, best-effort delivery attempt per call. No retries here:
callers decide what to do with a NotificationError.
"""

import logging
import smtplib
from email.mime.text import MIMEText
from email.utils import formataddr

import requests

logger = logging.getLogger(__name__)

FROM_NAME = 'MemorialHub'
SMTP_TIMEOUT = 30
TELEGRAM_API_URL = 'https://api.telegram.org/bot{token}/sendMessage'
TELEGRAM_TIMEOUT = 15


class NotificationError(Exception):
    """Delivery failed. The message is human readable and safe to store in the log."""


def send_email(host, port, user, password, to, subject, body):
    """Send a plain-text email through the user's SMTP server.
    Port 465 uses implicit TLS; any other port upgrades with STARTTLS when offered.
    """
    port = int(port)
    msg = MIMEText(body, 'plain', 'utf-8')
    msg['Subject'] = subject
    msg['From'] = formataddr((FROM_NAME, user))
    msg['To'] = to

    try:
        if port == 465:
            server = smtplib.SMTP_SSL(host, port, timeout=SMTP_TIMEOUT)
        else:
            server = smtplib.SMTP(host, port, timeout=SMTP_TIMEOUT)
        with server:
            server.ehlo()
            if port != 465 and server.has_extn('starttls'):
                server.starttls()
                server.ehlo()
            server.login(user, password)
            server.sendmail(user, [to], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"[Notify] Email to {to} failed: {e}")
        raise NotificationError(f"Email send failed: {e}") from e

    logger.info(f"[Notify] Email sent to {to}: {subject}")


def send_telegram(token, chat_id, text):
    """Send a message through the Telegram Bot API (HTML parse mode)."""
    url = TELEGRAM_API_URL.format(token=token)
    try:
        response = requests.post(url, json={
            'chat_id': chat_id,
            'text': text,
            'parse_mode': 'HTML',
        }, timeout=TELEGRAM_TIMEOUT)
    except requests.RequestException as e:
        logger.error(f"[Notify] Telegram request failed: {e}")
        raise NotificationError(f"Telegram send failed: {e}") from e

    if not response.ok:
        logger.error(f"[Notify] Telegram returned {response.status_code}")
        raise NotificationError(f"Telegram send failed ({response.status_code}): {response.text}")

    logger.info(f"[Notify] Telegram message sent to chat {chat_id}")
