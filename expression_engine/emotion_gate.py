"""
Emotion Gate Module

An "emotion rule" zone: while a subject is inside, the detected expression must
either match a required expression (REQUIRE_ONE) or avoid a forbidden one
(BLOCK_ONE). Breaking the rule fills an anger meter over fill_time seconds;
when it is full the gate triggers once and notifies its listeners. What
happens next (e.g. ending a round) is up to the caller.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional

from expression_engine.expression_calibrator import ExpressionClass

logger = logging.getLogger(__name__)

# Lower bound for fill_time so the meter never divides by zero
_MIN_FILL_TIME = 1e-4


class RuleMode(Enum):
    REQUIRE_ONE = "require_one"  # must show the required expression
    BLOCK_ONE = "block_one"      # must NOT show the blocked expression


class GateStatus(Enum):
    OUTSIDE = "outside"
    SAFE = "safe"
    WARNING = "warning"
    TRIGGERED = "triggered"


class EmotionGate:
    """Tick-driven rule check with an anger meter."""

    def __init__(
        self,
        mode: RuleMode = RuleMode.REQUIRE_ONE,
        required: ExpressionClass = ExpressionClass.SMILE,
        blocked: ExpressionClass = ExpressionClass.SMILE,
        fill_time: float = 1.0,
        reset_when_safe: bool = True,
        name: str = "zone",
    ):
        self.mode = mode
        self.required = required
        self.blocked = blocked
        self.fill_time = float(fill_time)
        self.reset_when_safe = bool(reset_when_safe)
        self.name = name

        self.inside = False
        self.anger = 0.0
        self.triggered = False
        self.last_expression: Optional[ExpressionClass] = None
        self._on_triggered: List[Callable[[str], None]] = []

    def add_trigger_listener(self, callback: Callable[[str], None]) -> None:
        """callback(reason) runs once each time the meter fills up."""
        self._on_triggered.append(callback)

    def is_safe(self, current: ExpressionClass) -> bool:
        if self.mode == RuleMode.REQUIRE_ONE:
            return current == self.required
        return current != self.blocked

    @property
    def rule_text(self) -> str:
        if self.mode == RuleMode.REQUIRE_ONE:
            return f"Required: {self.required.value}"
        return f"Forbidden: {self.blocked.value}"

    @property
    def seconds_left(self) -> float:
        """Time until the gate triggers if the rule stays broken."""
        return max(0.0, self.fill_time * (1.0 - self.anger))

    @property
    def status(self) -> GateStatus:
        if not self.inside:
            return GateStatus.OUTSIDE
        if self.triggered:
            return GateStatus.TRIGGERED
        if self.last_expression is not None and not self.is_safe(self.last_expression):
            return GateStatus.WARNING
        return GateStatus.SAFE

    def enter(self) -> None:
        self.inside = True
        self.triggered = False
        self.anger = 0.0
        self.last_expression = None

    def exit(self) -> None:
        self.inside = False
        self.triggered = False
        self.anger = 0.0
        self.last_expression = None

    def rearm(self) -> None:
        """Clear a trigger so the rule is enforced again."""
        self.triggered = False
        self.anger = 0.0

    def update(self, dt: float, current: ExpressionClass) -> GateStatus:
        """
        Advance the meter by dt seconds given the currently detected expression.

        Args:
            dt: Seconds since the previous update (negative values count as 0)
            current: Expression detected this tick

        Returns:
            The gate status after the update
        """
        self.last_expression = current
        if not self.inside or self.triggered:
            return self.status

        if self.is_safe(current):
            if self.reset_when_safe:
                self.anger = 0.0
            return self.status

        self.anger += max(0.0, float(dt)) / max(self.fill_time, _MIN_FILL_TIME)
        self.anger = min(1.0, self.anger)
        if self.anger >= 1.0:
            self._trigger()
        return self.status

    def _trigger(self) -> None:
        self.triggered = True
        need = f"need {self.required.value}" if self.mode == RuleMode.REQUIRE_ONE else f"forbid {self.blocked.value}"
        reason = f"{self.name}: failed emotion check ({need})"
        logger.info("Gate triggered: %s", reason)
        for callback in list(self._on_triggered):
            try:
                callback(reason)
            except Exception as e:
                logger.warning("Gate trigger listener failed: %s", e)

    def get_state(self) -> dict:
        """JSON-friendly snapshot for the HTTP layer."""
        return {
            "name": self.name,
            "mode": self.mode.value,
            "required": self.required.value,
            "blocked": self.blocked.value,
            "rule": self.rule_text,
            "fillTime": self.fill_time,
            "resetWhenSafe": self.reset_when_safe,
            "status": self.status.value,
            "anger": round(self.anger, 4),
            "secondsLeft": round(self.seconds_left, 3),
            "current": self.last_expression.value if self.last_expression else None,
        }
