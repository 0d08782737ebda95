"""Timing of import phases."""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional, Any, Generator, List


@dataclass
class PhaseMetrics:
    """Timing of one phase of a package import."""
    package: str
    phase: str
    duration: float
    start_time: float
    end_time: float
    success: bool = True


class PerformanceLogger:
    """
    Records how long checkout, update and patch phases take per package.

    Slow phases are reported as warnings so that a misbehaving remote or a
    cold alternates cache shows up in the logs.
    """

    SLOW_PHASE_SECONDS = 60.0

    def __init__(self, logger_name: str = 'buildsync.performance'):
        self.logger = logging.getLogger(logger_name)
        self._metrics: List[PhaseMetrics] = []
        self._lock = threading.Lock()

    @contextmanager
    def time_phase(self, package: str, phase: str,
                   log_level: int = logging.DEBUG) -> Generator[None, None, None]:
        """
        Context manager timing a phase; failures are recorded and re-raised.

        Args:
            package: Name of the package being processed
            phase: Name of the phase (checkout, update, patch)
            log_level: Logging level for completion messages
        """
        start_time = time.time()
        success = True
        try:
            yield
        except Exception as e:
            success = False
            self.logger.debug(f"{package}: {phase} failed after {time.time() - start_time:.3f}s: {e}")
            raise
        finally:
            end_time = time.time()
            duration = end_time - start_time
            with self._lock:
                self._metrics.append(PhaseMetrics(
                    package=package,
                    phase=phase,
                    duration=duration,
                    start_time=start_time,
                    end_time=end_time,
                    success=success
                ))

            if success:
                self.logger.log(log_level, f"{package}: {phase} completed in {duration:.3f}s")
            if duration > self.SLOW_PHASE_SECONDS:
                self.logger.warning(f"Slow {phase} for {package}: took {duration:.1f}s")

    def metrics(self, package: Optional[str] = None) -> List[PhaseMetrics]:
        """Recorded metrics, optionally restricted to one package."""
        with self._lock:
            return [m for m in self._metrics if package is None or m.package == package]

    def get_performance_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the recorded phases.

        Returns:
            Dictionary containing performance summary
        """
        metrics = self.metrics()
        if not metrics:
            return {"total_phases": 0, "average_duration": 0.0}

        total_duration = sum(m.duration for m in metrics)
        slowest = max(metrics, key=lambda m: m.duration)

        return {
            "total_phases": len(metrics),
            "total_duration": total_duration,
            "average_duration": total_duration / len(metrics),
            "success_rate": sum(1 for m in metrics if m.success) / len(metrics),
            "slowest_phase": {
                "package": slowest.package,
                "phase": slowest.phase,
                "duration": slowest.duration
            }
        }
