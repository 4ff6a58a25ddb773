"""Email and chat webhook delivery of cycle reports."""

import logging
import smtplib
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import requests

from .config import ChatConfig, EmailConfig
from .models import CycleReport, OverallStatus, TestName, TestOutcome
from .report import (
    build_chat_payload,
    build_error_payload,
    email_subject,
    error_email_subject,
    format_error_html,
    format_error_text,
    format_html_report,
    format_text_report,
)

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10  # seconds
SMTP_TIMEOUT = 30  # seconds

EMAIL_CHANNEL = "email"
CHAT_CHANNEL = "chat"


class Alerter:
    """Dispatches reports to the configured notification channels.

    Each channel is optional and independent: an unconfigured channel is
    skipped, and a delivery failure on one is logged without affecting the
    other or the caller.
    """

    def __init__(self, email: EmailConfig, chat: ChatConfig):
        self._email = email
        self._chat = chat

    @property
    def channels(self) -> list[str]:
        """Names of the channels that are configured."""
        names = []
        if self._email.enabled:
            names.append(EMAIL_CHANNEL)
        if self._chat.enabled:
            names.append(CHAT_CHANNEL)
        return names

    def send_report(self, report: CycleReport) -> dict[str, bool]:
        """Send a finished cycle report.

        Args:
            report: The report to deliver.

        Returns:
            Mapping of attempted channel name to delivery success.
        """
        results: dict[str, bool] = {}

        if self._email.enabled:
            results[EMAIL_CHANNEL] = self._send_email(
                email_subject(report),
                format_text_report(report),
                format_html_report(report),
            )
        else:
            logger.debug("Email channel not configured, skipping")

        if self._chat.enabled:
            if self._chat.alert_only_failures and report.is_passing:
                logger.debug("All tests passed and chat is failures-only, skipping")
            else:
                results[CHAT_CHANNEL] = self._send_webhook(build_chat_payload(report, self._chat))
        else:
            logger.debug("Chat webhook not configured, skipping")

        return results

    def send_error(self, report: CycleReport) -> dict[str, bool]:
        """Send the system-error notification for a cycle that raised.

        Failures-only mode does not apply: an error is never a pass.
        """
        results: dict[str, bool] = {}

        if self._email.enabled:
            results[EMAIL_CHANNEL] = self._send_email(
                error_email_subject(report),
                format_error_text(report),
                format_error_html(report),
            )

        if self._chat.enabled:
            results[CHAT_CHANNEL] = self._send_webhook(build_error_payload(report, self._chat))

        return results

    def test_channels(self) -> dict[str, bool]:
        """Send a test report to every configured channel, ignoring failures-only mode.

        Returns:
            Mapping of channel name to delivery success.
        """
        report = CycleReport(
            timestamp=datetime.now(UTC),
            site_url="https://example.com",
            outcomes=(
                TestOutcome(
                    name=TestName.CONNECTIVITY,
                    passed=True,
                    status_code=200,
                    response_time_ms=100,
                    details="Test notification from Website Monitor",
                ),
            ),
            overall_status=OverallStatus.PASS,
        )

        results: dict[str, bool] = {}
        if self._email.enabled:
            results[EMAIL_CHANNEL] = self._send_email(
                "✅ Website Monitor: test notification",
                format_text_report(report),
                format_html_report(report),
            )
        if self._chat.enabled:
            results[CHAT_CHANNEL] = self._send_webhook(build_chat_payload(report, self._chat))
        return results

    def _send_webhook(self, payload: dict) -> bool:
        """POST a JSON payload to the chat webhook.

        Returns:
            True if the webhook accepted the payload.
        """
        try:
            response = requests.post(
                self._chat.webhook_url,
                json=payload,
                timeout=WEBHOOK_TIMEOUT,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Chat webhook failed: %s", e)
            return False

        logger.info("Chat notification sent")
        return True

    def _send_email(self, subject: str, body_text: str, body_html: str) -> bool:
        """Send a multipart (plain + HTML) email to all recipients.

        Returns:
            True if the SMTP server accepted the message.
        """
        config = self._email

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config.from_addr
        msg["To"] = ", ".join(config.recipients)

        msg.attach(MIMEText(body_text, "plain", "utf-8"))
        msg.attach(MIMEText(body_html, "html", "utf-8"))

        try:
            server = smtplib.SMTP(config.host, config.port, timeout=SMTP_TIMEOUT)
            try:
                if config.use_tls:
                    server.starttls()

                if config.username and config.password:
                    server.login(config.username, config.password)

                server.sendmail(config.from_addr, config.recipients, msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email notification failed: %s", e)
            return False

        logger.info("Email notification sent to %s", ", ".join(config.recipients))
        return True
