"""
Prometheus Metrics - operator metrics in Prometheus text format

Features:
- Reconcile counters / durations per controller and result
- Work queue depth per controller
- Registry request counters per operation and outcome
"""

import threading
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class MetricType(str, Enum):
    """Prometheus metric type"""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    """Metric sample and its labels"""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)
    timestamp: Optional[float] = None


@dataclass
class MetricDefinition:
    """Metric definition"""
    name: str
    metric_type: MetricType
    help_text: str
    labels: List[str] = field(default_factory=list)
    buckets: Optional[List[float]] = None  # histograms only


RECONCILE_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]


class PrometheusRegistry:
    """In-process metric registry"""

    def __init__(self):
        self._metrics: Dict[str, MetricDefinition] = {}
        self._values: Dict[str, List[MetricValue]] = {}
        self._lock = threading.RLock()

        self._register_default_metrics()

    def _register_default_metrics(self):
        """Register the operator's standard metrics"""
        self.register(
            "controller_runtime_reconcile_total",
            MetricType.COUNTER,
            "Total number of reconciliations per controller",
            labels=["controller", "result"]  # success, requeue_after, error
        )

        self.register(
            "controller_runtime_reconcile_errors_total",
            MetricType.COUNTER,
            "Total number of reconciliation errors per controller",
            labels=["controller"]
        )

        self.register(
            "controller_runtime_reconcile_time_seconds",
            MetricType.HISTOGRAM,
            "Length of time per reconciliation per controller",
            labels=["controller"],
            buckets=RECONCILE_BUCKETS
        )

        self.register(
            "workqueue_depth",
            MetricType.GAUGE,
            "Current depth of the work queue",
            labels=["name"]
        )

        self.register(
            "registry_requests_total",
            MetricType.COUNTER,
            "Schema registry requests per operation and outcome",
            labels=["operation", "outcome"]
        )

    def register(
        self,
        name: str,
        metric_type,  # MetricType or str
        help_text: str,
        labels: List[str] = None,
        buckets: List[float] = None
    ):
        """Register a metric"""
        if isinstance(metric_type, str):
            metric_type = MetricType(metric_type)

        with self._lock:
            self._metrics[name] = MetricDefinition(
                name=name,
                metric_type=metric_type,
                help_text=help_text,
                labels=labels or [],
                buckets=buckets
            )
            self._values[name] = []

    def _sample(self, series: str, labels: Dict[str, str]) -> MetricValue:
        """Find the sample with these labels, creating it at zero"""
        for mv in self._values.setdefault(series, []):
            if mv.labels == labels:
                return mv
        mv = MetricValue(value=0, labels=labels)
        self._values[series].append(mv)
        return mv

    def set(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge"""
        with self._lock:
            if name not in self._metrics:
                logger.warning(f"Unknown metric: {name}")
                return
            mv = self._sample(name, labels or {})
            mv.value = value
            mv.timestamp = time.time()

    def inc(self, name: str, value: float = 1, labels: Dict[str, str] = None):
        """Increment a counter"""
        with self._lock:
            if name not in self._metrics:
                logger.warning(f"Unknown metric: {name}")
                return
            mv = self._sample(name, labels or {})
            mv.value += value
            mv.timestamp = time.time()

    def observe(self, name: str, value: float, labels: Dict[str, str] = None):
        """Add a histogram observation"""
        with self._lock:
            if name not in self._metrics:
                logger.warning(f"Unknown metric: {name}")
                return

            metric = self._metrics[name]
            if metric.metric_type != MetricType.HISTOGRAM:
                logger.warning(f"Metric {name} is not a histogram")
                return

            labels = labels or {}
            self._sample(f"{name}_sum", labels).value += value
            self._sample(f"{name}_count", labels).value += 1

            for bucket in metric.buckets or []:
                if value <= bucket:
                    self._sample(f"{name}_bucket", {**labels, "le": str(bucket)}).value += 1
            self._sample(f"{name}_bucket", {**labels, "le": "+Inf"}).value += 1

    def get(self, name: str, labels: Dict[str, str] = None) -> float:
        """Current value of a series (0 when never written)"""
        with self._lock:
            for mv in self._values.get(name, []):
                if mv.labels == (labels or {}):
                    return mv.value
        return 0

    def export(self) -> str:
        """Export in Prometheus text format"""
        lines = []

        with self._lock:
            for name, metric in self._metrics.items():
                lines.append(f"# HELP {name} {metric.help_text}")
                lines.append(f"# TYPE {name} {metric.metric_type.value}")

                if metric.metric_type == MetricType.HISTOGRAM:
                    for suffix in ("_bucket", "_sum", "_count"):
                        for mv in self._values.get(f"{name}{suffix}", []):
                            lines.append(f"{name}{suffix}{self._format_labels(mv.labels)} {mv.value}")
                else:
                    for mv in self._values.get(name, []):
                        lines.append(f"{name}{self._format_labels(mv.labels)} {mv.value}")

        return "\n".join(lines) + "\n"

    def _format_labels(self, labels: Dict[str, str]) -> str:
        """Format a label set"""
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"

    def clear(self):
        """Reset all samples"""
        with self._lock:
            self._values = {name: [] for name in self._metrics}


# Global registry
_registry = PrometheusRegistry()


def get_registry() -> PrometheusRegistry:
    """Return the global registry"""
    return _registry
