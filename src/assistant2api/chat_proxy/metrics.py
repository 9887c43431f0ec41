from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque


@dataclass
class MetricSample:
    ts: float
    model: str
    upstream_ms: float
    duration_ms: float
    chars_out: int
    stream: bool
    outcome: str


class MetricsAggregator:
    def __init__(self, capacity: int = 500):
        self.capacity = capacity
        self.samples: Deque[MetricSample] = deque(maxlen=capacity)
        self.start_ts = time.time()
        self.outcomes: Counter[str] = Counter()
        self.requests = {"total_requests": 0, "streaming_requests": 0}

    def add(self, sample: MetricSample):
        self.samples.append(sample)
        self.outcomes[sample.outcome] += 1
        self.requests["total_requests"] += 1
        if sample.stream:
            self.requests["streaming_requests"] += 1

    def summary(self) -> dict:
        base = {
            "uptime_seconds": time.time() - self.start_ts,
            "requests": dict(self.requests),
            "outcomes": dict(self.outcomes),
            "schema_version": 1,
        }
        if not self.samples:
            base["rolling"] = {"count": 0}
            return base
        upstream = sorted(s.upstream_ms for s in self.samples)
        durations = [s.duration_ms for s in self.samples]
        rates = [
            s.chars_out / (s.duration_ms / 1000)
            for s in self.samples
            if s.stream and s.duration_ms > 0
        ]
        base["rolling"] = {
            "count": len(self.samples),
            "avg_upstream_ms": sum(upstream) / len(upstream),
            "p95_upstream_ms": upstream[int(0.95 * (len(upstream) - 1))],
            "avg_duration_ms": sum(durations) / len(durations),
            "avg_stream_chars_per_second": (sum(rates) / len(rates)) if rates else None,
        }
        return base
