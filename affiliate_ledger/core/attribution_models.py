# affiliate_ledger/core/attribution_models.py
"""
Attribution weighting models.

Each model takes the matched touches ordered oldest -> newest and returns one
weight per touch. Weights are in [0, 1] and sum to 1 for any non-empty input.
Everything here is pure: no database, no clock (callers pass `now`).
"""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Sequence

from affiliate_ledger.core.clock import ensure_utc
from affiliate_ledger.core.statuses import AttributionModel

TIME_DECAY_HALF_LIFE = timedelta(days=7)

# POSITION model shares for N >= 3
POSITION_ENDPOINT_SHARE = 0.4
POSITION_INTERIOR_SHARE = 0.2


@dataclass(frozen=True)
class WeightedTouch:
    touch_id: int
    affiliate_id: int
    ref_code: str
    created_at: datetime
    weight: float = 0.0


WeightFn = Callable[[Sequence[WeightedTouch], datetime], list[float]]


def first_click_weights(touches: Sequence[WeightedTouch], now: datetime) -> list[float]:
    return [1.0 if i == 0 else 0.0 for i in range(len(touches))]


def last_click_weights(touches: Sequence[WeightedTouch], now: datetime) -> list[float]:
    last = len(touches) - 1
    return [1.0 if i == last else 0.0 for i in range(len(touches))]


def linear_weights(touches: Sequence[WeightedTouch], now: datetime) -> list[float]:
    n = len(touches)
    return [1.0 / n] * n if n else []


def time_decay_weights(touches: Sequence[WeightedTouch], now: datetime) -> list[float]:
    """
    raw(i) = 0.5 ** (age_i / half_life), normalized to sum to 1.
    Touches stamped after `now` (clock skew) count as age 0.
    """
    if not touches:
        return []
    now = ensure_utc(now)
    half_life = TIME_DECAY_HALF_LIFE.total_seconds()
    raw = []
    for t in touches:
        age = max(0.0, (now - ensure_utc(t.created_at)).total_seconds())
        raw.append(math.pow(0.5, age / half_life))
    total = sum(raw)
    return [r / total for r in raw]


def position_weights(touches: Sequence[WeightedTouch], now: datetime) -> list[float]:
    n = len(touches)
    if n == 0:
        return []
    if n == 1:
        return [1.0]
    if n == 2:
        return [0.5, 0.5]
    interior = POSITION_INTERIOR_SHARE / (n - 2)
    return [POSITION_ENDPOINT_SHARE] + [interior] * (n - 2) + [POSITION_ENDPOINT_SHARE]


MODEL_WEIGHTS: dict[AttributionModel, WeightFn] = {
    AttributionModel.FIRST_CLICK: first_click_weights,
    AttributionModel.LAST_CLICK: last_click_weights,
    AttributionModel.LINEAR: linear_weights,
    AttributionModel.TIME_DECAY: time_decay_weights,
    AttributionModel.POSITION: position_weights,
}


def _order_key(t: WeightedTouch) -> tuple[datetime, int]:
    return (ensure_utc(t.created_at), t.touch_id)


def apply_model(
    model: AttributionModel,
    touches: Sequence[WeightedTouch],
    now: datetime,
) -> list[WeightedTouch]:
    """
    Order touches oldest first and attach the model's weights.
    """
    ordered = sorted(touches, key=_order_key)
    weights = MODEL_WEIGHTS[AttributionModel(model)](ordered, now)
    return [replace(t, weight=w) for t, w in zip(ordered, weights)]


def pick_winner(weighted: Sequence[WeightedTouch]) -> WeightedTouch | None:
    """
    Maximum-weight touch. Ties go to the most recent touch
    (latest created_at, then highest id).
    """
    best: WeightedTouch | None = None
    for t in sorted(weighted, key=_order_key):
        if best is None or t.weight > best.weight or math.isclose(t.weight, best.weight, rel_tol=1e-9, abs_tol=1e-12):
            best = t
    return best
