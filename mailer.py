"""
Outbound email for BurnVault.

Sends the one-time link to the recipient and the account emails (login
codes, login notices, new-password requests). When no SMTP host is
configured messages are only logged.
"""
import html
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Optional

from exceptions import DeliveryFailedError

# Configure logging
logger = logging.getLogger(__name__)

_LAYOUT = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #f49e12;">{title}</h2>
  {body}
</div>
"""

class Mailer:
    """SMTP sender."""

    def __init__(self, host: Optional[str] = None, port: int = 587, user: Optional[str] = None,
                 password: Optional[str] = None, from_addr: Optional[str] = None,
                 use_tls: bool = True, timeout: int = 10):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_addr = from_addr or user
        self.use_tls = use_tls
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.port and self.from_addr)

    def send(self, to_email: str, subject: str, html_body: str, sender_name: str = "BurnVault") -> bool:
        """
        Send an HTML email.

        Returns:
            True if handed to the SMTP server, False in dry-run mode

        Raises:
            DeliveryFailedError: If the SMTP exchange fails
        """
        if not self.enabled:
            logger.info("Email (dry-run) to %s: %s", to_email, subject)
            return False

        msg = EmailMessage()
        msg['From'] = f"{sender_name} <{self.from_addr}>"
        msg['To'] = to_email
        msg['Subject'] = subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html_body, subtype='html')

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryFailedError(f"Email to {to_email} failed: {e}") from e

        logger.info("Email sent to %s: %s", to_email, subject)
        return True

    def send_secret_link(self, to_email: str, link: str, expires_at: Optional[datetime] = None,
                         sender_name: Optional[str] = None) -> bool:
        """Send the one-time link to its recipient."""
        expiry = (f"<p>This link expires on <strong>{expires_at:%Y-%m-%d %H:%M} UTC</strong>.</p>"
                  if expires_at else "")
        sender = f"<p>Sent by {html.escape(sender_name)}.</p>" if sender_name else ""
        body = (
            "<p>A password has been shared with you. It can be viewed only once:</p>"
            f'<p><a href="{html.escape(link)}">{html.escape(link)}</a></p>'
            f"{expiry}{sender}"
            "<p>After it has been viewed the link stops working.</p>"
        )
        return self.send(
            to_email,
            "Your one-time password link",
            _LAYOUT.format(title="One-time password", body=body),
            sender_name="Password Sender"
        )

    def send_otp(self, to_email: str, username: str, code: str, valid_minutes: int) -> bool:
        """Send a login verification code."""
        body = (
            f"<p>Hello {html.escape(username)},</p>"
            "<p>Use the code below to finish signing in:</p>"
            f'<p style="font-size: 28px; letter-spacing: 4px; font-weight: bold;">{code}</p>'
            f"<p>This code expires in <strong>{valid_minutes} minutes</strong>.</p>"
            '<p style="color:#666; font-size: 12px;">If you did not try to sign in, ignore this email.</p>'
        )
        return self.send(
            to_email,
            "Your verification code",
            _LAYOUT.format(title="Verification code", body=body),
            sender_name="Security"
        )

    def send_login_notice(self, to_email: str, username: str, ip_address: str,
                          user_agent: str, when: datetime) -> bool:
        """Tell a user that their account was just signed in to."""
        body = (
            f"<p>Hello {html.escape(username)},</p>"
            "<p>A new sign-in to your account was detected.</p>"
            f"<p><strong>Time:</strong> {when:%Y-%m-%d %H:%M:%S} UTC<br>"
            f"<strong>IP address:</strong> {html.escape(ip_address)}<br>"
            f"<strong>Device:</strong> {html.escape(user_agent)}</p>"
            "<p>If this was not you, change your password now.</p>"
        )
        return self.send(
            to_email,
            "New sign-in detected",
            _LAYOUT.format(title="New sign-in detected", body=body),
            sender_name="Security"
        )

    def send_new_password_request(self, admin_email: str, recipient_email: str, when: datetime) -> bool:
        """Forward a recipient's request for a fresh link to the administrator."""
        body = (
            "<p>A recipient has asked for a new password.</p>"
            f"<p><strong>Recipient:</strong> {html.escape(recipient_email)}<br>"
            f"<strong>Requested at:</strong> {when:%Y-%m-%d %H:%M:%S} UTC</p>"
            "<p>Please create and send a new one-time link.</p>"
        )
        return self.send(
            admin_email,
            "New password requested",
            _LAYOUT.format(title="New password requested", body=body),
            sender_name="Password Sender"
        )
