"""Alert rule evaluation engine.

Evaluates alert configurations against an evaluation context and
produces at most one alert per configuration per pass.
"""

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from src.alerts.dedup import DeduplicationGuard, dedup_key
from src.alerts.factory import AlertFactory
from src.alerts.models import (
    AlertConfiguration,
    AlertInstance,
    AlertValidation,
    EvaluationContext,
    RuleEvaluationResult,
)
from src.alerts.rules import RuleEvaluator
from src.alerts.store import AlertStore, InMemoryAlertStore
from src.alerts.validation import ConfigurationValidator, TierLimitsProvider
from src.logging_config import AlertLogContext, generate_evaluation_id, log_performance

logger = logging.getLogger(__name__)


def select_fired(results: list[RuleEvaluationResult]) -> Optional[RuleEvaluationResult]:
    """Pick the fired rule result reported for a configuration.

    Highest severity wins, then highest confidence, then rule order.
    """
    fired = [r for r in results if r.triggered]
    if not fired:
        return None
    return max(
        enumerate(fired),
        key=lambda pair: (pair[1].severity.rank, pair[1].confidence, -pair[0]),
    )[1]


class AlertRuleEngine:
    """Evaluates configurations and validates them.

    Holds no alert history itself; deduplication reads and writes the
    injected AlertStore.
    """

    def __init__(
        self,
        store: Optional[AlertStore] = None,
        rule_evaluator: Optional[RuleEvaluator] = None,
        tier_provider: Optional[TierLimitsProvider] = None,
        max_workers: int = 1,
    ) -> None:
        self.store = store or InMemoryAlertStore()
        self.rule_evaluator = rule_evaluator or RuleEvaluator()
        self.dedup = DeduplicationGuard(self.store)
        self.factory = AlertFactory(self.store)
        self.validator = ConfigurationValidator(tier_provider)
        self.max_workers = max(1, max_workers)

    @log_performance()
    def evaluate_alerts(
        self,
        configurations: list[AlertConfiguration],
        context: EvaluationContext,
    ) -> list[AlertInstance]:
        """Evaluate configurations against a context.

        Configurations are isolated: one that raises is logged and skipped,
        the rest are still evaluated.

        Args:
            configurations: Configurations to evaluate; inactive ones are skipped.
            context: Evaluation context.

        Returns:
            Alerts in configuration order. A duplicate within cooldown is
            reported as the existing alert (same id).
        """
        with AlertLogContext(evaluation_id=generate_evaluation_id()):
            if not context.has_sensor_data:
                logger.info("No sensor data in context; nothing to evaluate")
                return []

            active = [c for c in configurations if c.is_active()]
            if len(active) < len(configurations):
                logger.debug("Skipping %d inactive configurations", len(configurations) - len(active))

            if self.max_workers > 1 and len(active) > 1:
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    futures = [
                        pool.submit(
                            contextvars.copy_context().run,
                            self._evaluate_isolated, configuration, context,
                        )
                        for configuration in active
                    ]
                    outcomes = [f.result() for f in futures]
            else:
                outcomes = [self._evaluate_isolated(c, context) for c in active]

            alerts = [alert for alert in outcomes if alert is not None]
            logger.info(
                "Evaluated %d configurations: %d alerts", len(active), len(alerts),
            )
            return alerts

    def _evaluate_isolated(
        self,
        configuration: AlertConfiguration,
        context: EvaluationContext,
    ) -> Optional[AlertInstance]:
        with AlertLogContext(configuration_id=configuration.id):
            try:
                return self.evaluate_configuration(configuration, context)
            except Exception:
                logger.exception("Evaluation of configuration %s failed", configuration.id)
                return None

    def evaluate_configuration(
        self,
        configuration: AlertConfiguration,
        context: EvaluationContext,
    ) -> Optional[AlertInstance]:
        """Evaluate a single configuration; exceptions propagate.

        Args:
            configuration: Configuration to evaluate.
            context: Evaluation context.

        Returns:
            The new or duplicate alert, or None when no rule fired.
        """
        results = [
            self.rule_evaluator.evaluate(rule, configuration, context)
            for rule in configuration.rules
            if rule.enabled
        ]
        fired = select_fired(results)
        if fired is None:
            return None

        rule = next(r for r in configuration.rules if r.id == fired.rule_id)

        with self.store.lock(dedup_key(configuration.id, rule.id)):
            existing = self.dedup.find_duplicate(configuration.id, rule, context.current_time)
            if existing is not None:
                return existing

            alert = self.factory.create(configuration, rule, fired, context)
            self.store.save_alert(alert)

        if alert.suppressed:
            logger.info(
                "Alert %s created suppressed: %s", alert.id, fired.suppression_reason,
            )
        else:
            logger.info(
                "Alert triggered: %s (%s, %s)", alert.title, alert.id, alert.severity.value,
            )
        return alert

    def validate_configuration(self, configuration: AlertConfiguration) -> AlertValidation:
        """Statically validate a configuration; never raises."""
        return self.validator.validate(configuration)
