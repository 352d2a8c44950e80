"""Notification message templates.

Builds subject, plain and HTML bodies for initial and escalated alert
notifications, the SMS text and the webhook JSON payload.
"""

import html
from dataclasses import dataclass, field
from string import Template
from typing import Any, Optional

from src.alerts.config import SMS_MAX_LENGTH
from src.alerts.models import AlertInstance, EscalationStage
from src.alerts.serialization import to_jsonable


@dataclass
class NotificationTemplate:
    subject: str
    body: str
    html_body: str = ""
    variables: dict[str, str] = field(default_factory=dict)

    def sms_text(self) -> str:
        """Plain text clipped to a single SMS segment."""
        text = f"{self.subject}\n{self.variables.get('alert_description', '')}".strip()
        if len(text) > SMS_MAX_LENGTH:
            return text[:SMS_MAX_LENGTH - 3] + "..."
        return text


def alert_variables(alert: AlertInstance, dashboard_url: str) -> dict[str, str]:
    return {
        "alert_title": alert.title,
        "alert_description": alert.description,
        "severity": alert.severity.value.upper(),
        "triggered_at": alert.triggered_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip(),
        "alert_id": alert.id,
        "dashboard_url": f"{dashboard_url.rstrip('/')}/alerts/{alert.id}",
    }


def notification_template(
    alert: AlertInstance,
    dashboard_url: str,
    custom_message: Optional[str] = None,
) -> NotificationTemplate:
    """Template for the initial notification of an alert.

    `custom_message` may reference template variables as $name.
    """
    v = alert_variables(alert, dashboard_url)
    subject = f"{v['severity']} Alert: {v['alert_title']}"

    body = (
        "Alert Details:\n"
        f"- Title: {v['alert_title']}\n"
        f"- Severity: {v['severity']}\n"
        f"- Triggered: {v['triggered_at']}\n"
        f"- Description: {v['alert_description']}\n"
        "\n"
        f"View in dashboard: {v['dashboard_url']}\n"
        "\n"
        f"Alert ID: {v['alert_id']}"
    )
    if custom_message:
        body += "\n\n" + Template(custom_message).safe_substitute(v)

    e = {k: html.escape(val) for k, val in v.items()}
    html_body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px;">'
        f'<h2 style="color: #dc3545;">{e["severity"]} Alert</h2>'
        f"<h3>{e['alert_title']}</h3>"
        "<!-- banner -->"
        f"<p><strong>Severity:</strong> {e['severity']}</p>"
        f"<p><strong>Triggered:</strong> {e['triggered_at']}</p>"
        f"<p><strong>Description:</strong> {e['alert_description']}</p>"
        f'<p><a href="{e["dashboard_url"]}">View in Dashboard</a></p>'
        f'<p style="font-size: 12px; color: #666;">Alert ID: {e["alert_id"]}</p>'
        "</div>"
    )

    return NotificationTemplate(subject=subject, body=body, html_body=html_body, variables=v)


def escalation_template(
    alert: AlertInstance,
    stage: EscalationStage,
    level: int,
    dashboard_url: str,
    custom_message: Optional[str] = None,
) -> NotificationTemplate:
    """Template for a notification sent by an escalation stage.

    Args:
        alert: Alert being escalated.
        stage: Stage performing the escalation.
        level: Escalation level being entered (1-based).
        dashboard_url: Base URL of the dashboard.
        custom_message: Falls back to the stage's custom message.
    """
    base = notification_template(alert, dashboard_url)
    message = custom_message or stage.custom_message or ""

    lines = [
        f"*** ESCALATED ALERT - LEVEL {level} ***",
        "",
        base.body,
        "",
        "This alert has been escalated due to lack of acknowledgment.",
    ]
    if stage.require_acknowledgment:
        lines.append(
            f"Acknowledgment required within {stage.acknowledgment_timeout} minutes."
        )
    if message:
        lines.extend(["", message])

    banner = (
        '<div style="background: #ff6b6b; color: white; padding: 10px;">'
        f"<strong>ESCALATED ALERT - LEVEL {level}</strong></div>"
    )
    if message:
        banner += f"<p>{html.escape(message)}</p>"

    return NotificationTemplate(
        subject=f"ESCALATED (Level {level}): {base.subject}",
        body="\n".join(lines),
        html_body=base.html_body.replace("<!-- banner -->", banner),
        variables={**base.variables, "escalation_level": str(level)},
    )


def webhook_payload(alert: AlertInstance, template: NotificationTemplate) -> dict[str, Any]:
    return {
        "event": "alert.escalated" if "escalation_level" in template.variables else "alert.triggered",
        "alert_id": alert.id,
        "alert_title": alert.title,
        "severity": alert.severity.value,
        "triggered_at": alert.triggered_at.isoformat(),
        "description": alert.description,
        "metric_values": to_jsonable(alert.metric_values),
        "dashboard_url": template.variables.get("dashboard_url", ""),
        "subject": template.subject,
        "custom_fields": {
            "configuration_id": alert.configuration_id,
            "rule_id": alert.rule_id,
            "escalation_level": int(template.variables.get(
                "escalation_level", alert.escalation_level,
            )),
        },
    }
