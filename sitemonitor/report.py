"""Rendering of cycle reports for logs, email and chat webhooks.

Everything here is pure: functions take a CycleReport and return strings
or payload dictionaries. Delivery lives in the alerter module.
"""

from html import escape

from .config import ChatConfig
from .models import CycleReport, OverallStatus, TestOutcome

SEPARATOR = "=" * 42
RULE = "-" * 42

PASS_ICON = "✅"
FAIL_ICON = "❌"

STATUS_COLORS = {
    OverallStatus.PASS: "#28a745",  # Green
    OverallStatus.FAIL: "#dc3545",  # Red
    OverallStatus.ERROR: "#fd7e14",  # Orange
    OverallStatus.UNKNOWN: "#6c757d",  # Grey
}


def _icon(passed: bool) -> str:
    return PASS_ICON if passed else FAIL_ICON


def _label(passed: bool) -> str:
    return "PASS" if passed else "FAIL"


def _status_icon(status: OverallStatus) -> str:
    return PASS_ICON if status is OverallStatus.PASS else FAIL_ICON


def format_log_report(report: CycleReport) -> list[str]:
    """Render a report as console/log lines.

    Tested URL is shown only when it differs from the site URL, and the
    redirect target only when the final URL differs from the tested one.
    """
    lines = [
        "",
        "📊 MONITORING REPORT",
        SEPARATOR,
        f"🕐 Timestamp: {report.timestamp.isoformat()}",
        f"🎯 Overall Status: {report.overall_status.value}",
        f"🌐 Website: {report.site_url}",
        "",
        "📋 Test Results:",
        RULE,
    ]

    for index, outcome in enumerate(report.outcomes, start=1):
        lines.append(f"{index}. {_icon(outcome.passed)} {outcome.name.value}: {_label(outcome.passed)}")
        if outcome.status_code is not None:
            lines.append(f"   📡 Status Code: {outcome.status_code}")
        if outcome.response_time_ms is not None:
            lines.append(f"   ⏱️  Response Time: {outcome.response_time_ms}ms")
        if outcome.tested_url and outcome.tested_url != report.site_url:
            lines.append(f"   🔗 Tested URL: {outcome.tested_url}")
        lines.append(f"   📝 Details: {outcome.details}")
        if outcome.error:
            lines.append(f"   ⚠️  Error: {outcome.error}")
        if outcome.final_url and outcome.final_url != outcome.tested_url:
            lines.append(f"   🔄 Redirected to: {outcome.final_url}")
        lines.append("")

    lines.append(SEPARATOR)
    lines.append(
        f"📈 Summary: {report.passed_count} passed, {report.failed_count} failed "
        f"out of {len(report.outcomes)} tests"
    )
    if report.is_passing:
        lines.append("🎉 All systems operational!")
    else:
        lines.append("🚨 Issues detected - website monitoring failed!")

    return lines


def format_error_log(report: CycleReport, stack: str | None = None) -> list[str]:
    """Render the system-error block logged when a cycle itself fails."""
    lines = [
        "",
        "🚨 MONITORING SYSTEM ERROR",
        SEPARATOR,
        f"🕐 Timestamp: {report.timestamp.isoformat()}",
        f"❌ Error: {report.error}",
    ]
    if stack:
        lines.append(f"📍 Stack: {stack.rstrip()}")
    lines.append(SEPARATOR)
    return lines


def email_subject(report: CycleReport) -> str:
    return f"{_status_icon(report.overall_status)} Website Monitor: {report.overall_status.value} - {report.site_url}"


def error_email_subject(report: CycleReport) -> str:
    return f"🚨 Website Monitor: system error - {report.site_url}"


def _outcome_text_lines(outcome: TestOutcome) -> list[str]:
    lines = [f"{outcome.name.value}: {_icon(outcome.passed)} {_label(outcome.passed)}"]
    if outcome.status_code is not None:
        lines.append(f"  Status Code: {outcome.status_code}")
    if outcome.response_time_ms is not None:
        lines.append(f"  Response Time: {outcome.response_time_ms}ms")
    if outcome.tested_url:
        lines.append(f"  Tested URL: {outcome.tested_url}")
    if outcome.details:
        lines.append(f"  Details: {outcome.details}")
    if outcome.error:
        lines.append(f"  Error: {outcome.error}")
    return lines


def format_text_report(report: CycleReport) -> str:
    """Plain-text email body."""
    lines = [
        "=== Website Monitor Report ===",
        f"Status: {report.overall_status.value}",
        f"Time: {report.timestamp.isoformat()}",
        f"Website: {report.site_url}",
        "",
        "Test Results:",
    ]
    for outcome in report.outcomes:
        lines.append("")
        lines.extend(_outcome_text_lines(outcome))

    lines.extend(["", "---", "Generated by Website Monitor"])
    return "\n".join(lines)


def format_error_text(report: CycleReport) -> str:
    return "\n".join(
        [
            "=== Website Monitor System Error ===",
            f"Time: {report.timestamp.isoformat()}",
            f"Website: {report.site_url}",
            f"Error: {report.error}",
            "",
            "The monitoring cycle could not complete. No test report was produced.",
            "",
            "---",
            "Generated by Website Monitor",
        ]
    )


def _detail_row(label: str, value: object, color: str | None = None) -> str:
    style = f' style="color: {color};"' if color else ""
    return f'        <div class="test-details"{style}><strong>{label}:</strong> {escape(str(value))}</div>'


def format_html_report(report: CycleReport) -> str:
    """HTML email body, listing the same fields as the text body."""
    status_color = STATUS_COLORS[report.overall_status]
    status_icon = _status_icon(report.overall_status)

    parts = [
        f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 20px; background-color: #f8f9fa; }}
        .container {{ max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; overflow: hidden; }}
        .header {{ background-color: {status_color}; color: white; padding: 20px; text-align: center; }}
        .content {{ padding: 20px; }}
        .test-result {{ margin: 15px 0; padding: 15px; border-radius: 6px; border-left: 4px solid #ddd; }}
        .test-result.passed {{ border-left-color: #28a745; background-color: #d4edda; }}
        .test-result.failed {{ border-left-color: #dc3545; background-color: #f8d7da; }}
        .test-name {{ font-weight: bold; font-size: 1.1em; margin-bottom: 8px; }}
        .test-details {{ font-size: 0.9em; color: #666; margin: 4px 0; }}
        .footer {{ text-align: center; padding: 20px; color: #6c757d; font-size: 0.8em; }}
    </style>
</head>
<body>
<div class="container">
    <div class="header">
        <h1>{status_icon} Website Monitor Report</h1>
        <p>Status: {report.overall_status.value} | {report.timestamp.isoformat()}</p>
        <p>Website: {escape(report.site_url)}</p>
    </div>
    <div class="content">
        <h3>Test Results</h3>"""
    ]

    for outcome in report.outcomes:
        css_class = "passed" if outcome.passed else "failed"
        parts.append(f'    <div class="test-result {css_class}">')
        parts.append(f'        <div class="test-name">{_icon(outcome.passed)} {escape(outcome.name.value)}</div>')
        if outcome.status_code is not None:
            parts.append(_detail_row("Status Code", outcome.status_code))
        if outcome.response_time_ms is not None:
            parts.append(_detail_row("Response Time", f"{outcome.response_time_ms}ms"))
        if outcome.tested_url:
            parts.append(_detail_row("Tested URL", outcome.tested_url))
        if outcome.details:
            parts.append(_detail_row("Details", outcome.details))
        if outcome.error:
            parts.append(_detail_row("Error", outcome.error, color="#721c24"))
        parts.append("    </div>")

    parts.append(f"""    </div>
    <div class="footer">
        Generated by Website Monitor for the cycle of {report.timestamp.isoformat()}
    </div>
</div>
</body>
</html>""")

    return "\n".join(parts)


def format_error_html(report: CycleReport) -> str:
    color = STATUS_COLORS[OverallStatus.ERROR]
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: {color}; color: white; padding: 20px; border-radius: 8px; text-align: center;">
        <h1 style="margin: 0; font-size: 24px;">🚨 Monitoring System Error</h1>
    </div>
    <div style="padding: 20px; background-color: #f8f9fa; border-radius: 8px; margin-top: 20px;">
        <p><strong>Website:</strong> {escape(report.site_url)}</p>
        <p><strong>Time:</strong> {report.timestamp.isoformat()}</p>
        <p style="color: #721c24;"><strong>Error:</strong> {escape(str(report.error))}</p>
    </div>
    <p style="color: #666; font-size: 12px; text-align: center; margin-top: 20px;">
        Sent by Website Monitor
    </p>
</body>
</html>"""


def _chat_field(outcome: TestOutcome) -> dict:
    value = f"{_icon(outcome.passed)} {_label(outcome.passed)}"
    if outcome.response_time_ms is not None:
        value += f" ({outcome.response_time_ms}ms)"
    return {"title": outcome.name.value, "value": value, "short": True}


def build_chat_payload(report: CycleReport, chat: ChatConfig) -> dict:
    """Build the chat webhook payload for a finished report.

    Uses the Slack-compatible ``attachments`` format: colored by overall
    status, one field per outcome, and a failure count in the footer when
    the cycle did not pass.
    """
    if report.is_passing:
        text = "All monitoring tests passed."
        footer = "Website Monitor"
    else:
        text = "; ".join(f"{o.name.value}: {o.error or o.details}" for o in report.failures)
        footer = f"{report.failed_count} of {len(report.outcomes)} tests failed"

    return {
        "username": chat.username,
        "icon_emoji": chat.icon_emoji,
        "attachments": [
            {
                "color": STATUS_COLORS[report.overall_status],
                "title": f"{_status_icon(report.overall_status)} Website Monitor: {report.overall_status.value}",
                "title_link": report.site_url,
                "text": text,
                "fields": [_chat_field(outcome) for outcome in report.outcomes],
                "footer": footer,
                "ts": int(report.timestamp.timestamp()),
            }
        ],
    }


def build_error_payload(report: CycleReport, chat: ChatConfig) -> dict:
    """Build the chat payload announcing that a cycle itself failed."""
    return {
        "username": chat.username,
        "icon_emoji": chat.icon_emoji,
        "attachments": [
            {
                "color": STATUS_COLORS[OverallStatus.ERROR],
                "title": "🚨 Monitoring System Error",
                "title_link": report.site_url,
                "text": str(report.error),
                "fields": [
                    {"title": "Website", "value": report.site_url, "short": False},
                ],
                "footer": "Website Monitor",
                "ts": int(report.timestamp.timestamp()),
            }
        ],
    }
