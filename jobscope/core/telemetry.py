"""Process memory and CPU sampling for job telemetry."""

import sys
from dataclasses import dataclass

import psutil

from jobscope.core.logging import get_logger

try:
    import resource
except ImportError:  # Windows has no getrusage
    resource = None  # type: ignore[assignment]

logger = get_logger(__name__)


@dataclass
class MemorySample:
    current_bytes: int | None
    peak_bytes: int | None


@dataclass
class CpuSample:
    user_us: int
    sys_us: int


class TelemetrySampler:
    """Reads memory and CPU counters for the current process."""

    def __init__(self, process: psutil.Process | None = None) -> None:
        self._process = process or psutil.Process()

    def memory(self) -> MemorySample:
        """Current RSS and peak RSS; fields are None when unavailable."""
        current: int | None = None
        try:
            current = int(self._process.memory_info().rss) or None
        except psutil.Error as e:
            logger.bind(error=str(e)).debug("telemetry_memory_unavailable")
        return MemorySample(current_bytes=current, peak_bytes=self._peak_rss(current))

    def cpu(self) -> CpuSample | None:
        """Cumulative user/system CPU time of the process in microseconds."""
        try:
            times = self._process.cpu_times()
        except psutil.Error as e:
            logger.bind(error=str(e)).debug("telemetry_cpu_unavailable")
            return None
        return CpuSample(
            user_us=int(round(times.user * 1_000_000)),
            sys_us=int(round(times.system * 1_000_000)),
        )

    def _peak_rss(self, current: int | None) -> int | None:
        # Windows exposes peak working set directly
        try:
            peak_wset = getattr(self._process.memory_info(), "peak_wset", None)
        except psutil.Error:
            peak_wset = None
        if peak_wset:
            return int(peak_wset)
        if resource is not None:
            max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
            # ru_maxrss is bytes on macOS, kilobytes elsewhere
            return int(max_rss if sys.platform == "darwin" else max_rss * 1024) or None
        return current


def cpu_delta_ms(start_us: int, end_us: int) -> int:
    """Elapsed CPU milliseconds between two microsecond readings, clamped at zero."""
    return max(0, int(round((end_us - start_us) / 1000)))


def peak_delta_bytes(peak_start: int | None, peak_end: int | None) -> int | None:
    if peak_start is None or peak_end is None:
        return None
    return max(0, peak_end - peak_start)
