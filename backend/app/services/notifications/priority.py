"""
Priority scoring (1-10, 10 = most urgent) from five weighted sub-scores.

Each sub-score is normalized to [0, 10]; the weighted sum is rounded half-up and clamped.
calculate() never raises: any internal error yields DEFAULT_PRIORITY.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from app.core.constants import DEFAULT_PRIORITY, MAX_PRIORITY, MIN_PRIORITY, NEUTRAL_SCORE
from app.services.notifications.time_window import TimeWindow, to_local
from app.services.notifications.types import NotificationContext, NotificationType

logger = logging.getLogger(__name__)

WEIGHT_FACTORS = ("urgency", "user_level", "task_points", "notification_type", "time_context")
WEIGHT_SUM_TOLERANCE = 0.1

TYPE_SCORES: dict[NotificationType, int] = {
    NotificationType.ALERT: 10,
    NotificationType.ACHIEVEMENT: 8,
    NotificationType.REMINDER: 7,
    NotificationType.MOTIVATION: 5,
    NotificationType.PROGRESS: 4,
    NotificationType.INSIGHT: 3,
}

# (upper bound in hours, score): first bound the deadline is under wins
URGENCY_BANDS: tuple[tuple[float, int], ...] = (
    (0, 10),
    (2, 9),
    (6, 8),
    (24, 7),
    (48, 6),
    (168, 4),
)
URGENCY_FAR_FUTURE = 2

# Prime bands (inclusive local hours): early morning and early evening
PRIME_HOURS = ((8, 10), (18, 20))
DAYTIME_HOURS = (9, 17)


@dataclass(frozen=True)
class PriorityWeights:
    urgency: float = 0.4
    user_level: float = 0.15
    task_points: float = 0.2
    notification_type: float = 0.15
    time_context: float = 0.1

    @property
    def total(self) -> float:
        return sum(asdict(self).values())


def clamp_priority(value: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class PriorityCalculator:
    """Weighted multi-factor scorer. Weights can be replaced at runtime via update_weights()."""

    def __init__(self, weights: PriorityWeights | None = None):
        self.weights = weights or PriorityWeights()

    def calculate(self, context: NotificationContext) -> int:
        try:
            scores = self.sub_scores(context)
            weights = asdict(self.weights)
            final_score = sum(scores[factor] * weights[factor] for factor in WEIGHT_FACTORS)
            priority = clamp_priority(_round_half_up(final_score))
            logger.debug("Priority %s (scores=%s final=%.2f)", priority, scores, final_score)
            return priority
        except Exception as e:
            logger.warning("Priority calculation failed, using default: %s", e, exc_info=True)
            return DEFAULT_PRIORITY

    def sub_scores(self, context: NotificationContext) -> dict[str, float]:
        return {
            "urgency": self.urgency_score(context),
            "user_level": self.user_level_score(context),
            "task_points": self.task_points_score(context),
            "notification_type": self.notification_type_score(context),
            "time_context": self.time_context_score(context),
        }

    # -------------------------
    # Sub-scores
    # -------------------------

    def urgency_score(self, context: NotificationContext) -> float:
        if context.type == NotificationType.ALERT:
            return 10
        task = context.task
        if task is None or task.due_at is None:
            return NEUTRAL_SCORE
        hours = (task.due_at - context.now).total_seconds() / 3600
        for bound, score in URGENCY_BANDS:
            if hours < bound:
                return score
        return URGENCY_FAR_FUTURE

    def user_level_score(self, context: NotificationContext) -> float:
        user = context.user
        if user is None or not user.level:
            return NEUTRAL_SCORE
        level_score = min(10, user.level + 3)
        streak_bonus = min(2, user.streak / 5) if user.streak > 0 else 0
        return min(10, level_score + streak_bonus)

    def task_points_score(self, context: NotificationContext) -> float:
        task = context.task
        if task is None or not task.points:
            return NEUTRAL_SCORE
        # 1..20 points -> 3..10
        return _round_half_up(max(3, min(10, (task.points / 20) * 7 + 3)))

    def notification_type_score(self, context: NotificationContext) -> float:
        try:
            return TYPE_SCORES.get(NotificationType(context.type), NEUTRAL_SCORE)
        except ValueError:
            return NEUTRAL_SCORE

    def time_context_score(self, context: NotificationContext) -> float:
        settings = context.settings
        try:
            window = TimeWindow.parse(settings.window_start, settings.window_end)
            local_now = to_local(context.now, settings.timezone)
        except (AttributeError, TypeError, ValueError):
            return NEUTRAL_SCORE
        if not window.contains(local_now):
            return 2
        hour = local_now.hour
        if any(lo <= hour <= hi for lo, hi in PRIME_HOURS):
            return 8
        if DAYTIME_HOURS[0] <= hour <= DAYTIME_HOURS[1]:
            return 6
        return NEUTRAL_SCORE

    # -------------------------
    # Adjustments
    # -------------------------

    def adjust_for_engagement(self, priority: int, avg_engagement_rate: float | None) -> int:
        """-1 for users who rarely engage (<0.3), +1 for very engaged users (>0.7)."""
        if avg_engagement_rate is None:
            return clamp_priority(priority)
        if avg_engagement_rate < 0.3:
            return clamp_priority(priority - 1)
        if avg_engagement_rate > 0.7:
            return clamp_priority(priority + 1)
        return clamp_priority(priority)

    def dampen_for_queue_pressure(
        self,
        queue_snapshot: Iterable[Any],
        user_id: int,
        notification_type: NotificationType | str,
        priority: int,
    ) -> int:
        """
        Lower priority when the user already has a backlog. First match wins:
        >=3 pending for the user -> -2; else >=2 pending of the same type -> -1.
        """
        ntype = NotificationType(notification_type).value
        user_items = [n for n in queue_snapshot if n.user_id == user_id]
        if len(user_items) >= 3:
            return max(MIN_PRIORITY, priority - 2)
        same_type = [n for n in user_items if str(getattr(n.type, "value", n.type)) == ntype]
        if len(same_type) >= 2:
            return max(MIN_PRIORITY, priority - 1)
        return max(MIN_PRIORITY, priority)

    # -------------------------
    # Weights
    # -------------------------

    def update_weights(self, new_weights: Mapping[str, float]) -> bool:
        """Replace weights. Returns False (old weights kept) if a factor is missing or the sum is off."""
        missing = [f for f in WEIGHT_FACTORS if f not in new_weights]
        if missing:
            logger.warning("Rejected priority weights: missing factors %s", missing)
            return False
        try:
            values = {f: float(new_weights[f]) for f in WEIGHT_FACTORS}
        except (TypeError, ValueError):
            logger.warning("Rejected priority weights: non-numeric value in %s", dict(new_weights))
            return False
        if any(v < 0 for v in values.values()):
            logger.warning("Rejected priority weights: negative value in %s", values)
            return False
        total = sum(values.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            logger.warning("Rejected priority weights: sum %.3f not within %.1f of 1.0", total, WEIGHT_SUM_TOLERANCE)
            return False
        self.weights = PriorityWeights(**values)
        logger.info("Priority weights updated: %s", values)
        return True

    def get_stats(self) -> dict[str, Any]:
        weights = asdict(self.weights)
        return {
            "weights": weights,
            "total_weight": round(self.weights.total, 4),
            "factors": list(WEIGHT_FACTORS),
        }


_shared_calculator = PriorityCalculator()


def get_priority_calculator() -> PriorityCalculator:
    """Process-wide calculator; weights set through update_weights() apply to every later request and job."""
    return _shared_calculator
