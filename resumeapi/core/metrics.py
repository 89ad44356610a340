"""
Process-local counters, exposed at /metrics in Prometheus text format.

Only counters: request volume, webhook outcomes and reconciliation results.
Values reset on restart; scrape often enough that this does not matter.
"""

from __future__ import annotations

import re
import threading
from collections import defaultdict
from typing import DefaultDict, Dict, List, Optional, Sequence, Tuple

LabelKey = Tuple[str, ...]


class Counter:
    def __init__(self, name: str, help_text: str, label_names: Sequence[str] = ()):
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._values: DefaultDict[LabelKey, float] = defaultdict(float)
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelKey:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("Counters only go up")
        key = self._key(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def _render_labels(self, key: LabelKey) -> str:
        if not self.label_names:
            return ""
        pairs = []
        for name, raw in zip(self.label_names, key):
            escaped = raw.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
            pairs.append(f'{name}="{escaped}"')
        return "{" + ",".join(pairs) + "}"

    def export(self) -> List[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} counter"]
        with self._lock:
            samples = sorted(self._values.items())
        lines.extend(f"{self.name}{self._render_labels(key)} {float(value)}" for key, value in samples)
        return lines

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str, label_names: Sequence[str] = ()) -> Counter:
        with self._lock:
            existing = self._counters.get(name)
            if existing is None:
                existing = self._counters[name] = Counter(name, help_text, label_names)
            return existing

    def export_prometheus(self) -> str:
        with self._lock:
            counters = list(self._counters.values())
        lines: List[str] = []
        for counter in counters:
            lines.extend(counter.export())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        for counter in list(self._counters.values()):
            counter.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter(
    "http_requests_total", "HTTP requests by route and status", ("method", "path", "status")
)
billing_webhook_events_total = METRICS.counter(
    "billing_webhook_events_total", "Stripe webhook deliveries by event type and outcome", ("event_type", "outcome")
)
billing_reconciliations_total = METRICS.counter(
    "billing_reconciliations_total", "Subscription record writes by trigger and resulting status", ("source", "status")
)


# Stripe object ids and uuids would explode path cardinality
_ID_SEGMENT = re.compile(r"^(\d+|[0-9a-fA-F-]{8,}|(cus|sub|price|evt|cs|in|pi)_[A-Za-z0-9]+)$")


def normalize_path(path: str) -> str:
    """Collapse id-like path segments to :id."""
    segments = [":id" if _ID_SEGMENT.match(seg) else seg for seg in path.split("/") if seg]
    return "/" + "/".join(segments)
