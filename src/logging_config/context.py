"""Alert Log Context.

contextvars-based binding of evaluation, configuration and alert ids
to every log record emitted while processing them.
"""

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Any


_evaluation_id_var: ContextVar[str] = ContextVar("evaluation_id", default="")
_configuration_id_var: ContextVar[str] = ContextVar("configuration_id", default="")
_alert_id_var: ContextVar[str] = ContextVar("alert_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_evaluation_id() -> str:
    """Generate a unique evaluation pass ID using UUID4."""
    return str(uuid.uuid4())


def get_context_dict() -> dict[str, Any]:
    """Get all bound ids as a dictionary for log binding."""
    ctx = {}
    for name, var in (
        ("evaluation_id", _evaluation_id_var),
        ("configuration_id", _configuration_id_var),
        ("alert_id", _alert_id_var),
    ):
        value = var.get()
        if value:
            ctx[name] = value
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class AlertLogContext:
    """Context manager binding alert-processing ids to log entries.

    Only the ids given are rebound; nested contexts inherit the rest and
    restore the outer values on exit.

    Example:
        with AlertLogContext(evaluation_id=generate_evaluation_id()):
            with AlertLogContext(configuration_id=config.id):
                logger.info("evaluating")  # includes both ids
    """

    evaluation_id: str = ""
    configuration_id: str = ""
    alert_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    _tokens: list = field(default_factory=list, repr=False)

    def __enter__(self) -> "AlertLogContext":
        bindings: list[tuple[ContextVar, Any]] = [
            (_evaluation_id_var, self.evaluation_id),
            (_configuration_id_var, self.configuration_id),
            (_alert_id_var, self.alert_id),
        ]
        self._tokens = [
            (var, var.set(value)) for var, value in bindings if value
        ]
        if self.extra:
            merged = {**_extra_context_var.get(), **self.extra}
            self._tokens.append((_extra_context_var, _extra_context_var.set(merged)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        updated = {**_extra_context_var.get(), **kwargs}
        token: Token = _extra_context_var.set(updated)
        self._tokens.append((_extra_context_var, token))
        self.extra.update(kwargs)
