"""Escalation state machine.

Stage i of a policy takes an alert from escalation level i to i + 1.
The scheduler never sleeps or keeps timers; it answers whether a stage
may run now and when the next one falls due, so an external scheduler
(cron, durable timer) can drive it across restarts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from src.alerts.config import AlertInstanceStatus, EscalationState
from src.alerts.models import AlertInstance, EscalationPolicy, EscalationStage

logger = logging.getLogger(__name__)


@dataclass
class EscalationPlan:
    state: EscalationState
    next_stage_index: Optional[int] = None
    due_at: Optional[datetime] = None


class EscalationScheduler:
    """Decides escalation readiness for alerts under a policy."""

    @staticmethod
    def stage_limit(policy: EscalationPolicy) -> int:
        return min(policy.max_escalations, len(policy.stages))

    def state(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        at: datetime,
    ) -> EscalationState:
        if alert.status in (AlertInstanceStatus.RESOLVED, AlertInstanceStatus.FALSE_POSITIVE):
            return EscalationState.RESOLVED
        if alert.status == AlertInstanceStatus.ACKNOWLEDGED or alert.acknowledged_at:
            return EscalationState.ACKNOWLEDGED
        if policy.auto_resolve and at - alert.triggered_at >= timedelta(
            minutes=policy.auto_resolve_timeout
        ):
            return EscalationState.AUTO_RESOLVED
        if alert.escalation_level >= self.stage_limit(policy):
            return EscalationState.EXHAUSTED
        return EscalationState.PENDING

    @staticmethod
    def required_wait(policy: EscalationPolicy, stage_index: int) -> timedelta:
        """Minimum time after the last sent notification before a stage may run.

        The stage's own delay, or the prior stage's acknowledgment timeout
        when that is longer.
        """
        stage = policy.stages[stage_index]
        minutes = stage.delay_minutes
        if stage_index > 0:
            minutes = max(minutes, policy.stages[stage_index - 1].acknowledgment_timeout)
        return timedelta(minutes=minutes)

    def due_at(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        stage_index: int,
    ) -> datetime:
        reference = alert.last_sent_at or alert.triggered_at
        return reference + self.required_wait(policy, stage_index)

    def blocked_reason(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        stage_index: int,
        at: datetime,
    ) -> Optional[str]:
        """Why stage `stage_index` may not run at `at`, or None when it may.

        Args:
            alert: Alert being escalated.
            policy: Escalation policy.
            stage_index: Zero-based stage index.
            at: Current instant.

        Returns:
            A short reason string, or None if the stage is ready.
        """
        state = self.state(alert, policy, at)
        if state != EscalationState.PENDING:
            return state.value
        if stage_index < 0 or stage_index >= len(policy.stages):
            return "no such stage"
        if stage_index >= policy.max_escalations:
            return "max escalations reached"
        if alert.escalation_level > stage_index:
            return "stage already performed"
        if alert.escalation_level < stage_index:
            return "earlier stage not performed"
        if stage_index > 0 and not policy.stages[stage_index - 1].require_acknowledgment:
            return "prior stage does not require acknowledgment"

        due = self.due_at(alert, policy, stage_index)
        if at < due:
            return f"not due until {due.isoformat()}"
        return None

    def ready_stage(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        stage_index: int,
        at: datetime,
    ) -> Optional[EscalationStage]:
        reason = self.blocked_reason(alert, policy, stage_index, at)
        if reason is not None:
            logger.info(
                "Escalation of alert %s to stage %d skipped: %s",
                alert.id, stage_index, reason,
            )
            return None
        return policy.stages[stage_index]

    def next_due_at(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        at: datetime,
    ) -> Optional[datetime]:
        """When the next stage falls due; None once escalation has ended."""
        if self.state(alert, policy, at) != EscalationState.PENDING:
            return None
        stage_index = alert.escalation_level
        if stage_index > 0 and not policy.stages[stage_index - 1].require_acknowledgment:
            return None
        return self.due_at(alert, policy, stage_index)

    def plan(
        self,
        alert: AlertInstance,
        policy: EscalationPolicy,
        at: datetime,
    ) -> EscalationPlan:
        state = self.state(alert, policy, at)
        due = self.next_due_at(alert, policy, at)
        if due is None:
            return EscalationPlan(state=state)
        return EscalationPlan(state=state, next_stage_index=alert.escalation_level, due_at=due)
