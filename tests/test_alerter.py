"""Tests for the notification alerter module."""

import smtplib
from datetime import UTC, datetime
from email import message_from_string
from email.header import decode_header, make_header
from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from sitemonitor.alerter import CHAT_CHANNEL, EMAIL_CHANNEL, WEBHOOK_TIMEOUT, Alerter
from sitemonitor.config import ChatConfig, EmailConfig
from sitemonitor.models import CycleReport, OverallStatus, TestName, TestOutcome


@pytest.fixture
def email_config() -> EmailConfig:
    return EmailConfig(
        host="smtp.example.com",
        port=587,
        username="alerts@example.com",
        password="mailpass",
        recipients=["ops@example.com", "dev@example.com"],
    )


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig(webhook_url="https://hooks.example.com/webhook")


@pytest.fixture
def passing_report() -> CycleReport:
    """Create a report where every test passed."""
    return CycleReport(
        timestamp=datetime.now(UTC),
        site_url="https://example.com",
        outcomes=(
            TestOutcome(name=TestName.CONNECTIVITY, passed=True, status_code=200, response_time_ms=100),
            TestOutcome(name=TestName.LOGIN, passed=True, status_code=302, response_time_ms=200),
        ),
        overall_status=OverallStatus.PASS,
    )


@pytest.fixture
def failing_report() -> CycleReport:
    """Create a report with a failed login."""
    return CycleReport(
        timestamp=datetime.now(UTC),
        site_url="https://example.com",
        outcomes=(
            TestOutcome(name=TestName.CONNECTIVITY, passed=True, status_code=200, response_time_ms=100),
            TestOutcome(
                name=TestName.LOGIN,
                passed=False,
                status_code=200,
                details="Login failed - check credentials or form structure",
            ),
        ),
        overall_status=OverallStatus.FAIL,
    )


@pytest.fixture
def error_report() -> CycleReport:
    return CycleReport(
        timestamp=datetime.now(UTC),
        site_url="https://example.com",
        overall_status=OverallStatus.ERROR,
        error="boom",
    )


def _ok_response() -> Mock:
    response = Mock()
    response.raise_for_status.return_value = None
    return response


class TestChannels:
    """Tests for channel discovery."""

    def test_none_configured(self) -> None:
        assert Alerter(EmailConfig(), ChatConfig()).channels == []

    def test_both_configured(self, email_config: EmailConfig, chat_config: ChatConfig) -> None:
        assert Alerter(email_config, chat_config).channels == [EMAIL_CHANNEL, CHAT_CHANNEL]

    def test_unconfigured_channels_skipped(self, passing_report: CycleReport) -> None:
        alerter = Alerter(EmailConfig(), ChatConfig())
        with (
            patch("sitemonitor.alerter.requests.post") as mock_post,
            patch("sitemonitor.alerter.smtplib.SMTP") as mock_smtp,
        ):
            assert alerter.send_report(passing_report) == {}
        mock_post.assert_not_called()
        mock_smtp.assert_not_called()


class TestWebhook:
    """Tests for chat webhook delivery."""

    @patch("sitemonitor.alerter.requests.post")
    def test_send_success(self, mock_post: Mock, chat_config: ChatConfig, failing_report: CycleReport) -> None:
        mock_post.return_value = _ok_response()
        alerter = Alerter(EmailConfig(), chat_config)

        results = alerter.send_report(failing_report)

        assert results == {CHAT_CHANNEL: True}
        mock_post.assert_called_once()
        call_args = mock_post.call_args
        assert call_args[0][0] == "https://hooks.example.com/webhook"
        assert call_args[1]["timeout"] == WEBHOOK_TIMEOUT
        payload = call_args[1]["json"]
        assert payload["attachments"][0]["footer"] == "1 of 2 tests failed"

    @patch("sitemonitor.alerter.requests.post")
    def test_http_error_reported(self, mock_post: Mock, chat_config: ChatConfig, failing_report: CycleReport) -> None:
        response = Mock()
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        mock_post.return_value = response

        results = Alerter(EmailConfig(), chat_config).send_report(failing_report)

        assert results == {CHAT_CHANNEL: False}

    @patch("sitemonitor.alerter.requests.post")
    def test_connection_error_not_raised(
        self, mock_post: Mock, chat_config: ChatConfig, failing_report: CycleReport
    ) -> None:
        mock_post.side_effect = requests.ConnectionError("refused")

        results = Alerter(EmailConfig(), chat_config).send_report(failing_report)

        assert results == {CHAT_CHANNEL: False}

    @pytest.mark.parametrize(
        ("only_failures", "status", "sent"),
        [
            (False, OverallStatus.PASS, True),
            (False, OverallStatus.FAIL, True),
            (True, OverallStatus.PASS, False),
            (True, OverallStatus.FAIL, True),
            (True, OverallStatus.ERROR, True),
            (True, OverallStatus.UNKNOWN, True),
            (False, OverallStatus.UNKNOWN, True),
        ],
    )
    def test_failures_only_mode(
        self, passing_report: CycleReport, only_failures: bool, status: OverallStatus, sent: bool
    ) -> None:
        """Chat is skipped only for a passing cycle in failures-only mode."""
        chat = ChatConfig(webhook_url="https://hooks.example.com/webhook", alert_only_failures=only_failures)
        report = CycleReport(
            timestamp=passing_report.timestamp,
            site_url=passing_report.site_url,
            outcomes=passing_report.outcomes,
            overall_status=status,
        )

        with patch("sitemonitor.alerter.requests.post", return_value=_ok_response()) as mock_post:
            results = Alerter(EmailConfig(), chat).send_report(report)

        assert mock_post.called is sent
        assert (CHAT_CHANNEL in results) is sent


class TestEmail:
    """Tests for SMTP delivery."""

    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_send_success(self, mock_smtp: MagicMock, email_config: EmailConfig, failing_report: CycleReport) -> None:
        server = mock_smtp.return_value

        results = Alerter(email_config, ChatConfig()).send_report(failing_report)

        assert results == {EMAIL_CHANNEL: True}
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("alerts@example.com", "mailpass")
        server.quit.assert_called_once()

        from_addr, recipients, raw = server.sendmail.call_args[0]
        assert from_addr == "alerts@example.com"
        assert recipients == ["ops@example.com", "dev@example.com"]
        message = message_from_string(raw)
        assert message.get_content_type() == "multipart/alternative"
        assert [part.get_content_type() for part in message.get_payload()] == ["text/plain", "text/html"]

    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_no_tls_or_login_when_not_configured(self, mock_smtp: MagicMock, passing_report: CycleReport) -> None:
        email = EmailConfig(host="smtp.example.com", port=25, recipients=["ops@example.com"], use_tls=False)

        Alerter(email, ChatConfig()).send_report(passing_report)

        server = mock_smtp.return_value
        server.starttls.assert_not_called()
        server.login.assert_not_called()
        server.sendmail.assert_called_once()

    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_smtp_error_reported(self, mock_smtp: MagicMock, email_config: EmailConfig, failing_report: CycleReport) -> None:
        mock_smtp.return_value.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

        results = Alerter(email_config, ChatConfig()).send_report(failing_report)

        assert results == {EMAIL_CHANNEL: False}
        mock_smtp.return_value.quit.assert_called_once()

    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_connection_refused_reported(
        self, mock_smtp: MagicMock, email_config: EmailConfig, failing_report: CycleReport
    ) -> None:
        mock_smtp.side_effect = ConnectionRefusedError("refused")

        results = Alerter(email_config, ChatConfig()).send_report(failing_report)

        assert results == {EMAIL_CHANNEL: False}

    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_email_sent_even_when_passing_in_failures_only_mode(
        self, mock_smtp: MagicMock, email_config: EmailConfig, passing_report: CycleReport
    ) -> None:
        chat = ChatConfig(webhook_url="https://hooks.example.com/webhook", alert_only_failures=True)
        with patch("sitemonitor.alerter.requests.post") as mock_post:
            results = Alerter(email_config, chat).send_report(passing_report)

        assert results == {EMAIL_CHANNEL: True}
        mock_post.assert_not_called()


class TestChannelIsolation:
    """A failure on one channel must not affect the other."""

    @patch("sitemonitor.alerter.requests.post")
    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_email_failure_does_not_block_chat(
        self,
        mock_smtp: MagicMock,
        mock_post: Mock,
        email_config: EmailConfig,
        chat_config: ChatConfig,
        failing_report: CycleReport,
    ) -> None:
        mock_smtp.side_effect = OSError("network unreachable")
        mock_post.return_value = _ok_response()

        results = Alerter(email_config, chat_config).send_report(failing_report)

        assert results == {EMAIL_CHANNEL: False, CHAT_CHANNEL: True}

    @patch("sitemonitor.alerter.requests.post")
    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_chat_failure_does_not_affect_email(
        self,
        mock_smtp: MagicMock,
        mock_post: Mock,
        email_config: EmailConfig,
        chat_config: ChatConfig,
        failing_report: CycleReport,
    ) -> None:
        mock_post.side_effect = requests.Timeout("timed out")

        results = Alerter(email_config, chat_config).send_report(failing_report)

        assert results == {EMAIL_CHANNEL: True, CHAT_CHANNEL: False}


class TestSendError:
    """Tests for the system-error notification."""

    @patch("sitemonitor.alerter.requests.post")
    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_ignores_failures_only_mode(
        self, mock_smtp: MagicMock, mock_post: Mock, email_config: EmailConfig, error_report: CycleReport
    ) -> None:
        mock_post.return_value = _ok_response()
        chat = ChatConfig(webhook_url="https://hooks.example.com/webhook", alert_only_failures=True)

        results = Alerter(email_config, chat).send_error(error_report)

        assert results == {EMAIL_CHANNEL: True, CHAT_CHANNEL: True}
        payload = mock_post.call_args[1]["json"]
        assert payload["attachments"][0]["title"] == "🚨 Monitoring System Error"
        assert payload["attachments"][0]["text"] == "boom"
        raw = mock_smtp.return_value.sendmail.call_args[0][2]
        subject = str(make_header(decode_header(message_from_string(raw)["Subject"])))
        assert "system error" in subject


class TestTestChannels:
    """Tests for the test notification."""

    @patch("sitemonitor.alerter.requests.post")
    @patch("sitemonitor.alerter.smtplib.SMTP")
    def test_all_success(
        self, mock_smtp: MagicMock, mock_post: Mock, email_config: EmailConfig, chat_config: ChatConfig
    ) -> None:
        mock_post.return_value = _ok_response()

        results = Alerter(email_config, chat_config).test_channels()

        assert results == {EMAIL_CHANNEL: True, CHAT_CHANNEL: True}

    @patch("sitemonitor.alerter.requests.post")
    def test_sent_in_failures_only_mode(self, mock_post: Mock) -> None:
        mock_post.return_value = _ok_response()
        chat = ChatConfig(webhook_url="https://hooks.example.com/webhook", alert_only_failures=True)

        results = Alerter(EmailConfig(), chat).test_channels()

        assert results == {CHAT_CHANNEL: True}

    @patch("sitemonitor.alerter.requests.post")
    def test_failure(self, mock_post: Mock, chat_config: ChatConfig) -> None:
        mock_post.side_effect = requests.ConnectionError("refused")

        results = Alerter(EmailConfig(), chat_config).test_channels()

        assert results == {CHAT_CHANNEL: False}
