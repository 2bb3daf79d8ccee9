"""
NoteTrade Email Service: Gmail API Integration
Sends marketplace notification emails via Gmail OAuth 2.0.

Server-side behaviour:
  - Authenticates once at import via the configured token file (no browser popup)
  - Auto-refreshes expired tokens
  - Falls back to log-only when Gmail is unavailable, so callers never fail on email
"""

import base64
import html
import logging
import os
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import EMAIL_CONFIG, FRONTEND_URL

logger = logging.getLogger("notetrade.email")

# Gmail send-only scope
_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]


class EmailService:
    """Singleton-style Gmail API wrapper."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._initialized = True
        self._service = None
        self._ready = False
        self._sender_email = EMAIL_CONFIG["sender_email"]
        self._token_path = EMAIL_CONFIG["token_file"]
        self._authenticate()

    # ── Auth ──────────────────────────────────────────────

    def _authenticate(self):
        """Load the token file, refresh if needed. Never opens a browser."""
        if not os.path.exists(self._token_path):
            logger.warning("Gmail token file %s not found, email sending disabled", self._token_path)
            return

        try:
            creds = Credentials.from_authorized_user_file(self._token_path, _SCOPES)
            if not creds.valid:
                if creds.expired and creds.refresh_token:
                    creds.refresh(Request())
                    with open(self._token_path, "w") as f:
                        f.write(creds.to_json())
                    logger.info("Gmail token refreshed")
                else:
                    logger.warning("Gmail token invalid and cannot refresh, email disabled")
                    return
            self._service = build("gmail", "v1", credentials=creds)
        except (GoogleAuthError, ValueError, OSError) as exc:
            logger.error("Gmail authentication failed: %s", exc)
            return

        self._ready = True
        logger.info("Gmail service ready, sending as %s", self._sender_email)

    @property
    def is_ready(self) -> bool:
        return self._ready

    # ── Send helpers ─────────────────────────────────────

    def _send_raw(self, to: str, subject: str, html_body: str) -> dict | None:
        if not self._ready:
            logger.info("Email not configured, skipping '%s' to %s", subject, to)
            return None

        msg = MIMEMultipart("mixed")
        msg["to"] = to
        msg["subject"] = subject
        msg["from"] = f"{EMAIL_CONFIG['sender_name']} <{self._sender_email}>"
        msg.attach(MIMEText(html_body, "html"))

        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode()
        try:
            result = self._service.users().messages().send(userId="me", body={"raw": raw}).execute()
        except HttpError as err:
            logger.error("Gmail API error sending to %s: %s", to, err)
            return None
        logger.info("Email sent to %s, message id %s", to, result["id"])
        return result

    # ── Public API ───────────────────────────────────────

    def send_notification_email(self, to: str, recipient_name: str, title: str, message: str,
                                link: str = None) -> bool:
        """Send a branded notification email mirroring an in-app notification."""
        action = ""
        if link:
            action = _ACTION_BUTTON.format(url=html.escape(f"{FRONTEND_URL}{link}"))
        body = _NOTIFICATION_TEMPLATE.format(
            recipient_name=html.escape(recipient_name or "there"),
            title=html.escape(title),
            message=html.escape(message).replace("\n", "<br/>"),
            action=action,
            year=datetime.now().year,
        )
        return self._send_raw(to, f"NoteTrade: {title}", body) is not None

    def send_search_alert_email(self, to: str, recipient_name: str, search_name: str,
                                listing_title: str, asking_price: float, link: str) -> bool:
        """Tell a saved-search owner that a new listing matches their criteria."""
        body = _SEARCH_ALERT_TEMPLATE.format(
            recipient_name=html.escape(recipient_name or "there"),
            search_name=html.escape(search_name),
            listing_title=html.escape(listing_title),
            asking_price=f"${asking_price:,.2f}",
            action=_ACTION_BUTTON.format(url=html.escape(f"{FRONTEND_URL}{link}")),
            year=datetime.now().year,
        )
        return self._send_raw(to, f"New note matches '{search_name}'", body) is not None


# ═══════════════════════════════════════════════════
#  HTML Templates
# ═══════════════════════════════════════════════════

_ACTION_BUTTON = """
            <p style="margin:24px 0 0;text-align:center;">
              <a href="{url}" style="background:#0f766e;color:#fff;padding:12px 28px;border-radius:8px;text-decoration:none;font-weight:600;">Open in NoteTrade</a>
            </p>"""

_NOTIFICATION_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"></head>
<body style="margin:0;padding:0;background:#f4f6f9;font-family:'Segoe UI',Arial,sans-serif;">
  <table width="100%" cellpadding="0" cellspacing="0" style="background:#f4f6f9;padding:40px 0;">
    <tr><td align="center">
      <table width="520" cellpadding="0" cellspacing="0" style="background:#ffffff;border-radius:12px;overflow:hidden;">
        <tr>
          <td style="background:#0f766e;padding:28px 40px;text-align:center;">
            <h1 style="margin:0;color:#fff;font-size:26px;">NoteTrade</h1>
            <p style="margin:6px 0 0;color:rgba(255,255,255,.85);font-size:13px;">Mortgage Note Marketplace</p>
          </td>
        </tr>
        <tr>
          <td style="padding:32px 40px;">
            <p style="margin:0 0 8px;font-size:16px;color:#1e293b;">Hello <strong>{recipient_name}</strong>,</p>
            <h2 style="margin:16px 0 8px;font-size:18px;color:#0f172a;">{title}</h2>
            <p style="margin:0;font-size:14px;color:#475569;line-height:1.6;">{message}</p>
            {action}
          </td>
        </tr>
        <tr>
          <td style="background:#f8fafc;padding:18px 40px;text-align:center;border-top:1px solid #e2e8f0;">
            <p style="margin:0;font-size:12px;color:#94a3b8;">&copy; {year} NoteTrade</p>
          </td>
        </tr>
      </table>
    </td></tr>
  </table>
</body>
</html>
"""

_SEARCH_ALERT_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"></head>
<body style="margin:0;padding:0;background:#f4f6f9;font-family:'Segoe UI',Arial,sans-serif;">
  <table width="100%" cellpadding="0" cellspacing="0" style="background:#f4f6f9;padding:40px 0;">
    <tr><td align="center">
      <table width="520" cellpadding="0" cellspacing="0" style="background:#ffffff;border-radius:12px;overflow:hidden;">
        <tr>
          <td style="background:#0f766e;padding:28px 40px;text-align:center;">
            <h1 style="margin:0;color:#fff;font-size:26px;">NoteTrade</h1>
            <p style="margin:6px 0 0;color:rgba(255,255,255,.85);font-size:13px;">Saved Search Alert</p>
          </td>
        </tr>
        <tr>
          <td style="padding:32px 40px;">
            <p style="margin:0 0 8px;font-size:16px;color:#1e293b;">Hello <strong>{recipient_name}</strong>,</p>
            <p style="margin:0 0 16px;font-size:14px;color:#475569;">A new listing matches your saved search <strong>{search_name}</strong>.</p>
            <table width="100%" cellpadding="8" style="background:#f1f5f9;border-radius:8px;font-size:14px;">
              <tr><td style="color:#64748b;">Listing</td><td style="font-weight:600;">{listing_title}</td></tr>
              <tr><td style="color:#64748b;">Asking price</td><td style="font-weight:600;">{asking_price}</td></tr>
            </table>
            {action}
          </td>
        </tr>
        <tr>
          <td style="background:#f8fafc;padding:18px 40px;text-align:center;border-top:1px solid #e2e8f0;">
            <p style="margin:0;font-size:12px;color:#94a3b8;">&copy; {year} NoteTrade. Manage alerts from your saved searches.</p>
          </td>
        </tr>
      </table>
    </td></tr>
  </table>
</body>
</html>
"""


# Module-level singleton
email_service = EmailService()
