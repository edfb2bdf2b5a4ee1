"""
Session metrics with Prometheus text exposition.

Counters may carry labels (``topic=...``); gauges are unlabelled.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any

PREFIX = "ntfy_tv_"

DESCRIPTIONS = {
    "frames_received_total": "Frames read from the relay socket",
    "frames_dropped_total": "Frames that did not parse into a message",
    "messages_received_total": "Messages published to the session",
    "persist_errors_total": "Messages that could not be stored",
    "connections_opened_total": "Successful WebSocket handshakes",
    "reconnects_scheduled_total": "Backoff timers started",
    "reconnects_abandoned_total": "Times the session gave up reconnecting",
    "connected": "1 while the relay socket is open",
    "messages_in_session": "Messages held in the live list",
}

LabelSet = tuple[tuple[str, str], ...]


def _render_labels(labels: LabelSet) -> str:
    if not labels:
        return ""
    inner = ",".join(f'{k}="{v}"' for k, v in labels)
    return "{" + inner + "}"


class MetricsCollector:
    """Counters and gauges for the session and its frame pipeline."""

    def __init__(self) -> None:
        self._counters: dict[str, dict[LabelSet, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1, **labels: str) -> None:
        self._counters[name][tuple(sorted(labels.items()))] += value

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def get(self, name: str, **labels: str) -> int | float:
        """Gauge value, or a counter total (summed over labels unless given)."""
        if name in self._gauges:
            return self._gauges[name]
        series = self._counters.get(name)
        if not series:
            return 0
        if labels:
            return series.get(tuple(sorted(labels.items())), 0)
        return sum(series.values())

    @property
    def uptime(self) -> float:
        return time.time() - self._start_time

    def to_prometheus(self) -> str:
        lines = []
        for name in sorted(self._counters):
            full = PREFIX + name
            if name in DESCRIPTIONS:
                lines.append(f"# HELP {full} {DESCRIPTIONS[name]}")
            lines.append(f"# TYPE {full} counter")
            for labels, value in sorted(self._counters[name].items()):
                lines.append(f"{full}{_render_labels(labels)} {value}")
        for name, value in sorted(self._gauges.items()):
            full = PREFIX + name
            if name in DESCRIPTIONS:
                lines.append(f"# HELP {full} {DESCRIPTIONS[name]}")
            lines.append(f"# TYPE {full} gauge")
            lines.append(f"{full} {value}")
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {self.uptime:.1f}")
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        return {
            "counters": {name: self.get(name) for name in sorted(self._counters)},
            "gauges": dict(self._gauges),
            "uptime_seconds": round(self.uptime, 1),
        }
