"""
In-memory turn metrics for the voice assistant.
"""

import threading
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional, Any
import structlog

logger = structlog.get_logger()


@dataclass
class LatencyMetrics:
    """Latency statistics for one stage of a turn."""
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float
    samples: int


@dataclass
class SessionMetrics:
    """Metrics for one run of the assistant."""
    start_time: datetime
    end_time: Optional[datetime] = None
    completed_turns: int = 0
    capture_latencies: List[float] = field(default_factory=list)
    inference_latencies: List[float] = field(default_factory=list)
    speech_latencies: List[float] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    preemptions: int = 0
    stale_results: int = 0


def calculate_latency_stats(latencies: List[float]) -> LatencyMetrics:
    """Calculate statistical metrics for a list of latencies."""
    if not latencies:
        return LatencyMetrics(0, 0, 0, 0, 0, 0, 0)

    sorted_latencies = sorted(latencies)
    count = len(sorted_latencies)

    def percentile(p: float) -> float:
        return sorted_latencies[min(int(p * count), count - 1)]

    return LatencyMetrics(
        min=sorted_latencies[0],
        max=sorted_latencies[-1],
        avg=sum(sorted_latencies) / count,
        p50=percentile(0.5),
        p95=percentile(0.95),
        p99=percentile(0.99),
        samples=count,
    )


class MetricsCollector:
    """
    Collects per-turn latencies and failures.

    Nothing is written to disk; the summary is reported when the
    assistant shuts down.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.current: SessionMetrics = SessionMetrics(start_time=datetime.now())
        self._start_monotonic = time.monotonic()

    def reset(self) -> None:
        with self._lock:
            self.current = SessionMetrics(start_time=datetime.now())
            self._start_monotonic = time.monotonic()

    def end_session(self) -> None:
        """Mark the end of the run."""
        with self._lock:
            self.current.end_time = datetime.now()
        logger.debug(
            "Ending metrics collection", turns=self.current.completed_turns
        )

    def record_capture_latency(self, latency_ms: float) -> None:
        with self._lock:
            self.current.capture_latencies.append(latency_ms)

    def record_inference_latency(self, latency_ms: float) -> None:
        with self._lock:
            self.current.inference_latencies.append(latency_ms)

    def record_speech_latency(self, latency_ms: float) -> None:
        with self._lock:
            self.current.speech_latencies.append(latency_ms)

    def record_turn(self) -> None:
        """Record a turn that reached the assistant's reply."""
        with self._lock:
            self.current.completed_turns += 1

    def record_error(self, component: str, error: str) -> None:
        with self._lock:
            self.current.errors.append(
                {
                    "timestamp": datetime.now().isoformat(),
                    "component": component,
                    "error": error,
                }
            )

    def record_preemption(self) -> None:
        """Record speech cut short by a new capture request."""
        with self._lock:
            self.current.preemptions += 1

    def record_stale_result(self) -> None:
        """Record a result dropped because its turn was abandoned."""
        with self._lock:
            self.current.stale_results += 1

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the current metrics."""
        with self._lock:
            current = self.current
            errors_by_component: Dict[str, int] = {}
            for error in current.errors:
                component = error["component"]
                errors_by_component[component] = (
                    errors_by_component.get(component, 0) + 1
                )

            return {
                "session_duration_seconds": time.monotonic() - self._start_monotonic,
                "completed_turns": current.completed_turns,
                "capture_latency_ms": asdict(
                    calculate_latency_stats(current.capture_latencies)
                ),
                "inference_latency_ms": asdict(
                    calculate_latency_stats(current.inference_latencies)
                ),
                "speech_latency_ms": asdict(
                    calculate_latency_stats(current.speech_latencies)
                ),
                "total_errors": len(current.errors),
                "errors_by_component": errors_by_component,
                "preemptions": current.preemptions,
                "stale_results": current.stale_results,
            }
