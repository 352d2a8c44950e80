"""CLI entry point.

    python main.py evaluate --configs configs.json --context context.json
    python main.py validate --config config.json --tier free
"""

import argparse
import json
import sys

from src.alerts import AlertRuleEngine, ConfigurationError, StaticTierLimits, SubscriptionTier
from src.alerts.serialization import (
    dump_alerts,
    dump_validation,
    load_configuration,
    load_configurations,
    load_context,
)
from src.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
from src.settings import get_settings


def _read_json(path: str):
    if path == "-":
        return json.load(sys.stdin)
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def cmd_evaluate(args) -> int:
    configurations = load_configurations(_read_json(args.configs))
    context = load_context(_read_json(args.context))

    engine = AlertRuleEngine(max_workers=get_settings().evaluation_workers)
    alerts = engine.evaluate_alerts(configurations, context)
    print(json.dumps(dump_alerts(alerts), indent=2))
    return 0


def cmd_validate(args) -> int:
    configuration = load_configuration(_read_json(args.config))
    tier = SubscriptionTier(args.tier or get_settings().subscription_tier)

    engine = AlertRuleEngine(tier_provider=StaticTierLimits(tier))
    validation = engine.validate_configuration(configuration)
    print(json.dumps(dump_validation(validation), indent=2))
    return 0 if validation.is_valid else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Building alerts - rule evaluation and configuration validation"
    )
    parser.add_argument(
        "--log-level", choices=[level.value for level in LogLevel], default="WARNING",
        help="Log level (default: WARNING)"
    )
    parser.add_argument(
        "--log-format", choices=[f.value for f in LogFormat], default="console",
        help="Log output format on stderr (default: console)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    evaluate = sub.add_parser("evaluate", help="Evaluate configurations against a context")
    evaluate.add_argument("--configs", required=True, help="Configurations JSON file ('-' for stdin)")
    evaluate.add_argument("--context", required=True, help="Evaluation context JSON file")
    evaluate.set_defaults(func=cmd_evaluate)

    validate = sub.add_parser("validate", help="Validate a configuration")
    validate.add_argument("--config", required=True, help="Configuration JSON file ('-' for stdin)")
    validate.add_argument(
        "--tier", choices=[t.value for t in SubscriptionTier], default=None,
        help="Subscription tier (default: from settings)"
    )
    validate.set_defaults(func=cmd_validate)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(LoggingConfig(
        level=LogLevel(args.log_level),
        format=LogFormat(args.log_format),
    ))

    try:
        return args.func(args)
    except (OSError, json.JSONDecodeError, ConfigurationError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
