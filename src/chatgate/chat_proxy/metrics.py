from __future__ import annotations

import time
from collections import Counter, defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

# Relay outcomes that count as a successful request.
OK_OUTCOMES = frozenset({"streamed"})


@dataclass
class MetricSample:
    ts: float
    provider: str
    model: str
    status_code: int
    outcome: str  # streamed | upstream_error | unreachable | aborted | failed
    ttfb_ms: Optional[float]
    bytes_out: int
    duration_ms: float


def _percentile(values: List[float], fraction: float) -> Optional[float]:
    if not values:
        return None
    ordered = sorted(values)
    return ordered[int(fraction * (len(ordered) - 1))]


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class MetricsAggregator:
    """Rolling window of finished relays plus lifetime per-provider counters."""

    def __init__(self, capacity: int = 500):
        self.samples: Deque[MetricSample] = deque(maxlen=capacity)
        self.started = time.time()
        self.by_provider: Dict[str, Counter] = defaultdict(Counter)

    def add(self, sample: MetricSample) -> None:
        self.samples.append(sample)
        counts = self.by_provider[sample.provider]
        counts["total_requests"] += 1
        counts["streamed" if sample.outcome in OK_OUTCOMES else "errors"] += 1

    def uptime(self) -> float:
        return time.time() - self.started

    def summary(self) -> dict:
        window = list(self.samples)
        ttfb = [s.ttfb_ms for s in window if s.ttfb_ms is not None]
        rolling: dict = {"count": len(window)}
        if window:
            rolling.update(
                avg_ttfb_ms=_mean(ttfb),
                p95_ttfb_ms=_percentile(ttfb, 0.95),
                bytes_out=sum(s.bytes_out for s in window),
                avg_duration_ms=_mean([s.duration_ms for s in window]),
                outcomes=dict(Counter(s.outcome for s in window)),
            )
        return {
            "uptime_seconds": self.uptime(),
            "rolling": rolling,
            "requests_by_provider": {
                provider: {
                    "total_requests": counts["total_requests"],
                    "streamed": counts["streamed"],
                    "errors": counts["errors"],
                }
                for provider, counts in self.by_provider.items()
            },
            "schema_version": 1,
        }
