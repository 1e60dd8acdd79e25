"""Pure functions that turn alerts into channel-neutral Notifications."""

from __future__ import annotations

import datetime

from complywatch.core.types import (
    Alert,
    Notification,
    PeriodTotals,
    Severity,
    SystemStatus,
    Violation,
)

_GENERIC_CORRECTION = "Review the violation and apply the appropriate correction."
_GENERIC_RECOMMENDATION = "Follow the platform best practices to prevent similar issues."


def _iso(ts: float | None) -> str:
    if ts is None:
        return "N/A"
    return datetime.datetime.fromtimestamp(ts, datetime.UTC).isoformat()


def _duration(start: float, end: float) -> str:
    minutes = int(max(end - start, 0) // 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m" if hours else f"{minutes}m"


def _or_na(value: object) -> str:
    return "N/A" if value is None or value == "" else str(value)


def violation_details(violation: Violation) -> str:
    """Multi-line human summary of a violation."""
    return "\n".join([
        f"Type: {violation.type}",
        f"Message: {violation.message}",
        f"Actual: {_or_na(violation.actual)}",
        f"Limit: {_or_na(violation.limit)}",
    ])


def _subject(alert: Alert) -> str:
    vtype = alert.violation.type
    if alert.severity == Severity.CRITICAL:
        return f"CRITICAL compliance violation - {vtype} - immediate action required"
    if alert.severity == Severity.HIGH:
        return f"High priority compliance issue - {vtype}"
    if "performance" in vtype.lower():
        return f"Performance alert - {vtype}"
    return f"Compliance issue - {vtype}"


def _fields(alert: Alert) -> dict[str, str]:
    v = alert.violation
    fields = {
        "alert_id": alert.id,
        "type": v.type,
        "severity": alert.severity.label,
        "agent": v.agent_id or "unknown",
    }
    if v.solution_id:
        fields["solution"] = v.solution_id
    if v.actual is not None:
        fields["actual"] = str(v.actual)
    if v.limit is not None:
        fields["limit"] = str(v.limit)
    return fields


def alert_notification(alert: Alert) -> Notification:
    """Initial notification for a newly created alert."""
    v = alert.violation
    if alert.severity == Severity.CRITICAL:
        actions_title = "IMMEDIATE ACTION REQUIRED"
        actions = str(v.details.get("correction") or _GENERIC_CORRECTION)
    else:
        actions_title = "Recommended actions"
        actions = str(v.details.get("suggestion") or _GENERIC_RECOMMENDATION)

    body = "\n".join([
        f"Agent: {v.agent_id or 'unknown'}",
        f"Severity: {alert.severity.name}",
        f"Time: {_iso(alert.created_at)}",
        "",
        "Details:",
        violation_details(v),
        "",
        f"{actions_title}:",
        actions,
        "",
        f"Alert ID: {alert.id}",
    ])
    return Notification(
        subject=_subject(alert),
        body=body,
        priority=alert.severity.label,
        alert_id=alert.id,
        severity=alert.severity,
        agent_id=v.agent_id,
        level=0,
        fields=_fields(alert),
        timestamp=alert.created_at,
    )


def escalation_notification(
    alert: Alert, level: int, targets: list[str], now: float,
) -> Notification:
    """Notification sent when *alert* is promoted to *level*."""
    previous = "\n".join(
        f"- {r.channel}: {r.outcome.value} at {_iso(r.timestamp)}"
        for r in alert.notifications_sent
    ) or "- none"
    body = "\n".join([
        f"ESCALATED ALERT - Level {level}",
        "",
        f"Original alert: {alert.id}",
        f"Type: {alert.violation.type}",
        f"Severity: {alert.severity.name}",
        f"Agent: {alert.agent_id or 'unknown'}",
        f"Original time: {_iso(alert.created_at)}",
        f"Escalation time: {_iso(now)}",
        f"Targets: {', '.join(targets) or 'N/A'}",
        "",
        "This alert has been escalated due to lack of response.",
        "",
        "Violation details:",
        violation_details(alert.violation),
        "",
        "Previous notifications:",
        previous,
    ])
    fields = _fields(alert)
    fields["level"] = str(level)
    return Notification(
        subject=f"ESCALATED: {alert.violation.type} - Level {level}",
        body=body,
        priority="critical",
        alert_id=alert.id,
        severity=alert.severity,
        agent_id=alert.agent_id,
        level=level,
        targets=list(targets),
        fields=fields,
        timestamp=now,
    )


def resolution_notification(alert: Alert) -> Notification:
    """Notification sent to the channels that carried the original alert."""
    resolved_at = alert.resolved_at if alert.resolved_at is not None else alert.updated_at
    resolution = alert.resolution
    description = resolution.description if resolution and resolution.description else (
        "No description provided"
    )
    resolved_by = resolution.resolved_by if resolution else "system"
    body = "\n".join([
        "Alert resolved",
        "",
        f"Alert ID: {alert.id}",
        f"Type: {alert.violation.type}",
        f"Severity: {alert.severity.name}",
        f"Agent: {alert.agent_id or 'unknown'}",
        f"Created: {_iso(alert.created_at)}",
        f"Resolved: {_iso(resolved_at)}",
        f"Duration: {_duration(alert.created_at, resolved_at)}",
        "",
        "Resolution:",
        description,
        "",
        f"Resolved by: {resolved_by}",
    ])
    return Notification(
        subject=f"RESOLVED: {alert.violation.type} - Alert {alert.id}",
        body=body,
        priority="low",
        alert_id=alert.id,
        severity=alert.severity,
        agent_id=alert.agent_id,
        level=alert.escalation_level,
        fields=_fields(alert),
        timestamp=resolved_at,
    )


def summary_notification(
    status: SystemStatus,
    period: str,
    totals: PeriodTotals | None = None,
) -> Notification:
    """Periodic compliance summary, with the period's alert counts when given."""
    fields = {
        "compliance_score": f"{status.compliance_score:.0f}",
        "active_alerts": str(status.active_alerts),
        "agents_coordinated": str(status.agents_coordinated),
        "uptime_secs": f"{status.uptime_secs:.0f}",
    }
    unhealthy = sorted(name for name, ok in status.subsystems.items() if not ok)
    if unhealthy:
        fields["unhealthy_subsystems"] = ", ".join(unhealthy)
    lines = [
        f"Compliance summary ({period})",
        "",
        f"Overall compliance score: {status.compliance_score:.0f}/100",
        f"Active alerts: {status.active_alerts}",
        f"Agents coordinated: {status.agents_coordinated}",
    ]
    if totals is not None:
        fields.update({
            "total_alerts": str(totals.total_alerts),
            "critical_alerts": str(totals.critical_alerts),
            "high_alerts": str(totals.high_alerts),
            "resolved_alerts": str(totals.resolved_alerts),
        })
        lines += [
            "",
            f"Period: {_iso(totals.start)} - {_iso(totals.end)}",
            f"New alerts: {totals.total_alerts} "
            f"(critical {totals.critical_alerts}, high {totals.high_alerts})",
            f"Resolved alerts: {totals.resolved_alerts}",
        ]
        if totals.top_violations:
            lines.append("Top violations:")
            lines += [f"  {vtype}: {count}" for vtype, count in totals.top_violations.items()]
    lines.append(f"Report generated: {_iso(status.timestamp)}")
    return Notification(
        subject=f"Compliance summary - {period}",
        body="\n".join(lines),
        priority="low",
        severity=Severity.LOW,
        fields=fields,
        timestamp=status.timestamp,
    )
