"""Minimal in-process counters and histograms.

No external dependencies. A `MetricsRegistry` is created at bootstrap and
handed to the middleware and the /metrics endpoint.
"""

from typing import Dict, Any, Optional, Tuple, List
import threading


LabelsKey = Tuple[Tuple[str, str], ...]

DEFAULT_BINS_MS: List[float] = [5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000]


def _labels_key(labels: Optional[Dict[str, str]]) -> LabelsKey:
    if not labels:
        return tuple()
    # Stable ordering
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


class MetricsRegistry:
    def __init__(self, bins_ms: Optional[List[float]] = None):
        self._bins = list(bins_ms or DEFAULT_BINS_MS)
        self._lock = threading.Lock()
        # (name, labels) -> value
        self._counters: Dict[Tuple[str, LabelsKey], int] = {}
        # name -> labels -> {"counts": [...], "sum_ms": float}
        self._histograms: Dict[str, Dict[LabelsKey, Dict[str, Any]]] = {}

    def inc_counter(self, metric: str, labels: Optional[Dict[str, str]] = None, amount: int = 1) -> None:
        key = (metric, _labels_key(labels))
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def record_timing(self, metric: str, value_ms: float, labels: Optional[Dict[str, str]] = None) -> None:
        if value_ms is None:
            return
        # Upper-inclusive bins; last slot is overflow
        idx = len(self._bins)
        for i, b in enumerate(self._bins):
            if value_ms <= b:
                idx = i
                break
        lk = _labels_key(labels)
        with self._lock:
            series = self._histograms.setdefault(metric, {})
            entry = series.get(lk)
            if entry is None:
                entry = {"counts": [0] * (len(self._bins) + 1), "sum_ms": 0.0}
                series[lk] = entry
            entry["counts"][idx] += 1
            entry["sum_ms"] += float(value_ms)

    def counter_value(self, metric: str, labels: Optional[Dict[str, str]] = None) -> int:
        with self._lock:
            return self._counters.get((metric, _labels_key(labels)), 0)

    def snapshot(self) -> Dict[str, Any]:
        counters: List[Dict[str, Any]] = []
        histograms: List[Dict[str, Any]] = []
        with self._lock:
            for (name, labels_tuple), value in self._counters.items():
                counters.append(
                    {
                        "name": name,
                        "labels": {k: v for k, v in labels_tuple},
                        "value": value,
                    }
                )
            for name, series in self._histograms.items():
                for labels_tuple, entry in series.items():
                    histograms.append(
                        {
                            "name": name,
                            "labels": {k: v for k, v in labels_tuple},
                            "bins_ms": list(self._bins),
                            "counts": list(entry["counts"]),
                            "count": sum(entry["counts"]),
                            "sum_ms": entry["sum_ms"],
                        }
                    )

        return {"counters": counters, "histograms": histograms}
