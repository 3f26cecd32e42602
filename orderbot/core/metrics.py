from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class RestaurantTurnMetric:
    total_turns: int = 0
    failed_turns: int = 0
    total_duration_ms: float = 0.0
    intents: Counter = field(default_factory=Counter)
    executed_tools: Counter = field(default_factory=Counter)
    rejected_tools: Counter = field(default_factory=Counter)
    failed_tools: Counter = field(default_factory=Counter)
    offers_detected: int = 0


class InMemoryTurnMetrics:
    def __init__(self) -> None:
        self._metrics: dict[str, RestaurantTurnMetric] = {}
        self._lock = Lock()

    def observe_turn(
        self,
        restaurant_id: int | str,
        *,
        intent: str | None,
        duration_ms: float,
        executed: list[str] | None = None,
        rejected: list[str] | None = None,
        failed: list[str] | None = None,
        offer_detected: bool = False,
    ) -> None:
        with self._lock:
            metric = self._metrics.setdefault(str(restaurant_id), RestaurantTurnMetric())
            metric.total_turns += 1
            metric.total_duration_ms += duration_ms
            if intent:
                metric.intents[intent] += 1
            metric.executed_tools.update(executed or [])
            metric.rejected_tools.update(rejected or [])
            metric.failed_tools.update(failed or [])
            if offer_detected:
                metric.offers_detected += 1

    def observe_failure(self, restaurant_id: int | str, duration_ms: float) -> None:
        with self._lock:
            metric = self._metrics.setdefault(str(restaurant_id), RestaurantTurnMetric())
            metric.failed_turns += 1
            metric.total_duration_ms += duration_ms

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            result: dict[str, dict] = {}
            for restaurant_id, metric in self._metrics.items():
                attempts = metric.total_turns + metric.failed_turns
                avg = metric.total_duration_ms / attempts if attempts else 0.0
                result[restaurant_id] = {
                    "total_turns": metric.total_turns,
                    "failed_turns": metric.failed_turns,
                    "avg_duration_ms": round(avg, 2),
                    "intents": dict(metric.intents),
                    "executed_tools": dict(metric.executed_tools),
                    "rejected_tools": dict(metric.rejected_tools),
                    "failed_tools": dict(metric.failed_tools),
                    "offers_detected": metric.offers_detected,
                }
            return result

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()


turn_metrics = InMemoryTurnMetrics()
