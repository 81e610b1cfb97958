"""
Notify module for the Result Watcher pipeline.

This module tells a subject that their result has been released.
Supports two notification channels:
- WhatsApp via the Twilio REST API (primary)
- Email via SMTP with TLS (fallback)

Each channel is optional. A channel without credentials is simply not
available; the dispatcher moves on to the next one.
"""

import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from html import escape
from typing import Dict, Optional

import requests

from result_watcher.status import Subject
from result_watcher.utils import get_bool_env, get_env_var, get_logger


# Module logger
logger = get_logger("notify")

# Twilio API configuration
TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
DEFAULT_WHATSAPP_FROM = "whatsapp:+14155238886"

# SMTP defaults
DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587

NOTIFICATION_TIMEOUT = 30  # seconds

EMAIL_SUBJECT = "🎉 Your Exam Result is Available!"

CHANNEL_WHATSAPP = "whatsapp"
CHANNEL_EMAIL = "email"
CHANNEL_NONE = "none"


class NotificationError(Exception):
    """Raised when a channel fails to deliver a message."""

    def __init__(self, message: str, channel: Optional[str] = None, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.channel = channel
        self.original_error = original_error


@dataclass
class NotificationOutcome:
    """
    Result of one notification dispatch.

    Attributes:
        delivered: Whether any channel delivered the message.
        channel_used: "whatsapp", "email" or "none".
        error: Failure description when not delivered.
    """
    delivered: bool
    channel_used: str
    error: Optional[str] = None


# =============================================================================
# Message Formatting
# =============================================================================


def format_message_plain(subject: Subject) -> str:
    """
    Format the release notice as plain text.

    Used as the WhatsApp body and as the email plain-text part.

    Args:
        subject: Subject whose result was released.

    Returns:
        Message text.
    """
    lines = [
        "🎉 Result Available!",
        "",
        f"Hello {subject.name},",
        "",
        f"Your exam result for Roll Number {subject.roll_number} has been released!",
        "",
        "Please check the Result Watcher app to view and download your result.",
        "",
        "Thank you!",
    ]
    return "\n".join(lines)


def format_message_html(subject: Subject) -> str:
    """
    Format the release notice as an HTML email body.

    Args:
        subject: Subject whose result was released.

    Returns:
        HTML string.
    """
    name = escape(subject.name)
    roll_number = escape(subject.roll_number)

    html_lines = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '  <meta charset="utf-8">',
        "</head>",
        "<body>",
        '  <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
        '    <h2 style="color: #4CAF50;">Result Available!</h2>',
        f"    <p>Hello {name},</p>",
        f"    <p>Your exam result for <strong>Roll Number {roll_number}</strong> has been released!</p>",
        "    <p>Please check the Result Watcher app to view and download your result.</p>",
        "    <hr>",
        '    <p style="color: #666; font-size: 12px;">This is an automated notification from Result Watcher.</p>',
        "  </div>",
        "</body>",
        "</html>",
    ]
    return "\n".join(html_lines)


# =============================================================================
# WhatsApp Channel
# =============================================================================


class TwilioWhatsAppChannel:
    """Send WhatsApp messages through the Twilio Messages API."""

    name = CHANNEL_WHATSAPP

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str = DEFAULT_WHATSAPP_FROM,
        session: Optional[requests.Session] = None,
        dry_run: bool = False
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.dry_run = dry_run
        self.auth = (account_sid, auth_token)
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": "ResultWatcher/1.0"})
        self.session = session

    @classmethod
    def from_env(cls, dry_run: Optional[bool] = None) -> Optional["TwilioWhatsAppChannel"]:
        """
        Build the channel from TWILIO_* environment variables.

        Returns:
            The channel, or None if credentials are not configured.
        """
        account_sid = get_env_var("TWILIO_ACCOUNT_SID", required=False)
        auth_token = get_env_var("TWILIO_AUTH_TOKEN", required=False)
        if not account_sid or not auth_token:
            return None

        from_number = get_env_var("TWILIO_WHATSAPP_FROM", required=False, default=DEFAULT_WHATSAPP_FROM)
        assert from_number is not None
        if dry_run is None:
            dry_run = get_bool_env("DRY_RUN")
        return cls(account_sid, auth_token, from_number=from_number, dry_run=dry_run)

    def send_whatsapp(self, to_number: str, body_text: str) -> None:
        """
        Send a WhatsApp message.

        Raises:
            NotificationError: If Twilio rejects the message or is unreachable.
        """
        to_address = to_number if to_number.startswith("whatsapp:") else f"whatsapp:{to_number}"

        if self.dry_run:
            logger.info(f"[DRY RUN] Would send WhatsApp message to {to_address}")
            return

        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        payload = {"From": self.from_number, "To": to_address, "Body": body_text}

        try:
            response = self.session.post(url, data=payload, auth=self.auth, timeout=NOTIFICATION_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Twilio request failed: {e}", channel=self.name, original_error=e) from e

        if response.status_code not in (200, 201):
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise NotificationError(f"Twilio API error {response.status_code}: {detail}", channel=self.name)

        logger.info(f"WhatsApp notification sent to {to_address}")

    def check_connection(self) -> bool:
        """Verify the Twilio credentials by fetching the account resource."""
        try:
            response = self.session.get(
                f"{TWILIO_API_BASE}/Accounts/{self.account_sid}.json",
                auth=self.auth,
                timeout=10
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Twilio connection check failed: {e}")
            return False

        if response.status_code == 200:
            logger.debug("Twilio connection OK")
            return True

        logger.warning(f"Twilio authentication failed: HTTP {response.status_code}")
        return False


# =============================================================================
# Email Channel
# =============================================================================


class SmtpMailChannel:
    """
    Send email over SMTP with TLS.

    Supports both:
    - Port 465: SMTP_SSL (implicit TLS)
    - Other ports: SMTP with STARTTLS (explicit TLS)
    """

    name = CHANNEL_EMAIL

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_address: Optional[str] = None,
        dry_run: bool = False
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_address = from_address or user
        self.dry_run = dry_run

    @classmethod
    def from_env(cls, dry_run: Optional[bool] = None) -> Optional["SmtpMailChannel"]:
        """
        Build the channel from SMTP_* environment variables.

        Returns:
            The channel, or None if credentials are not configured.

        Raises:
            ValueError: If SMTP_PORT is set but is not an integer.
        """
        user = get_env_var("SMTP_USER", required=False)
        password = get_env_var("SMTP_PASSWORD", required=False)
        if not user or not password:
            return None

        host = get_env_var("SMTP_HOST", required=False, default=DEFAULT_SMTP_HOST)
        port_str = get_env_var("SMTP_PORT", required=False, default=str(DEFAULT_SMTP_PORT))
        assert host is not None and port_str is not None

        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"SMTP_PORT must be a valid integer, got: {port_str}")

        if dry_run is None:
            dry_run = get_bool_env("DRY_RUN")
        return cls(
            host,
            port,
            user,
            password,
            from_address=get_env_var("EMAIL_FROM", required=False),
            dry_run=dry_run
        )

    def _connect(self, timeout: float) -> smtplib.SMTP:
        ssl_context = ssl.create_default_context()
        if self.port == 465:
            logger.debug("Using SMTP_SSL (implicit TLS) for port 465")
            return smtplib.SMTP_SSL(self.host, self.port, timeout=timeout, context=ssl_context)

        logger.debug(f"Using SMTP with STARTTLS for port {self.port}")
        server = smtplib.SMTP(self.host, self.port, timeout=timeout)
        try:
            server.starttls(context=ssl_context)
        except Exception:
            server.close()
            raise
        return server

    def send_email(self, to_address: str, subject: str, html_body: str, text_body: str) -> None:
        """
        Send a multipart (plain + HTML) email.

        Raises:
            NotificationError: On connection, TLS, authentication or send failure.
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would send email to {to_address}: {subject}")
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to_address
        msg["Date"] = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S +0000")
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")

        logger.info(f"Connecting to SMTP server: {self.host}:{self.port}")
        try:
            with self._connect(NOTIFICATION_TIMEOUT) as server:
                server.login(self.user, self.password)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise NotificationError(f"SMTP authentication failed: {e}", channel=self.name, original_error=e) from e
        except smtplib.SMTPException as e:
            raise NotificationError(f"SMTP error while sending email: {e}", channel=self.name, original_error=e) from e
        except ssl.SSLError as e:
            raise NotificationError(f"SSL/TLS error while sending email: {e}", channel=self.name, original_error=e) from e
        except OSError as e:
            raise NotificationError(f"Could not reach SMTP server: {e}", channel=self.name, original_error=e) from e

        logger.info(f"Email notification sent to {to_address}")

    def check_connection(self) -> bool:
        """Verify SMTP connectivity and credentials."""
        try:
            with self._connect(10) as server:
                server.login(self.user, self.password)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"Email connection check failed: {e}")
            return False

        logger.debug(f"Email connection OK, authenticated with {self.user}")
        return True


# =============================================================================
# Dispatcher
# =============================================================================


class NotificationDispatcher:
    """
    Deliver a release notice over WhatsApp, falling back to email.

    Each configured channel is tried at most once per call.
    """

    def __init__(self, messaging=None, mail=None):
        self.messaging = messaging
        self.mail = mail

    @classmethod
    def from_env(cls, dry_run: Optional[bool] = None) -> "NotificationDispatcher":
        """Build a dispatcher with whichever channels are configured."""
        return cls(
            messaging=TwilioWhatsAppChannel.from_env(dry_run=dry_run),
            mail=SmtpMailChannel.from_env(dry_run=dry_run)
        )

    def notify(self, subject: Subject, markup: Optional[str] = None) -> NotificationOutcome:
        """
        Tell a subject their result is out.

        Args:
            subject: Subject whose result was released.
            markup: Result page snapshot (not included in the message).

        Returns:
            NotificationOutcome describing which channel delivered, if any.
        """
        text_body = format_message_plain(subject)
        messaging_error: Optional[str] = None

        if subject.whatsapp_number and self.messaging is not None:
            try:
                self.messaging.send_whatsapp(subject.whatsapp_number, text_body)
                return NotificationOutcome(delivered=True, channel_used=CHANNEL_WHATSAPP)
            except Exception as e:
                messaging_error = str(e)
                logger.warning(f"[{subject.roll_number}] WhatsApp notification failed: {e}")

        if subject.email_address and self.mail is not None:
            try:
                self.mail.send_email(
                    subject.email_address,
                    EMAIL_SUBJECT,
                    format_message_html(subject),
                    text_body
                )
                return NotificationOutcome(delivered=True, channel_used=CHANNEL_EMAIL)
            except Exception as e:
                logger.error(f"[{subject.roll_number}] Email notification failed: {e}")
                return NotificationOutcome(delivered=False, channel_used=CHANNEL_EMAIL, error=str(e))

        return NotificationOutcome(
            delivered=False,
            channel_used=CHANNEL_NONE,
            error=messaging_error or "no channel available"
        )


def notification_channels_status(dispatcher: NotificationDispatcher) -> Dict[str, bool]:
    """Report which channels are configured."""
    return {
        CHANNEL_WHATSAPP: dispatcher.messaging is not None,
        CHANNEL_EMAIL: dispatcher.mail is not None,
    }
