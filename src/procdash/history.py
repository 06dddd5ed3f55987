"""Bounded per-process metric history."""

from collections import deque

from procdash.models import MetricSample

HISTORY_LEN = 60


class MetricHistory:
    """
    Fixed-capacity CPU/memory time series, one per process id.

    Series are created the first time an id is sampled and are never pruned,
    so a process that disappears keeps its last minute of history.
    """

    def __init__(self, capacity: int = HISTORY_LEN) -> None:
        self._capacity = max(1, capacity)
        self._series: dict[int, deque[MetricSample]] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def __contains__(self, process_id: object) -> bool:
        return process_id in self._series

    def sample(self, process_id: int, cpu_percent: float, memory_kb: int) -> None:
        """Append a sample, evicting the oldest one when the series is full."""
        buffer = self._series.get(process_id)
        if buffer is None:
            buffer = self._series[process_id] = deque(maxlen=self._capacity)
        buffer.append(MetricSample.from_percent(cpu_percent, memory_kb))

    def series(self, process_id: int) -> list[MetricSample]:
        """Return the samples for an id, oldest first. Unknown ids give []."""
        return list(self._series.get(process_id, ()))

    def cpu_series(self, process_id: int) -> list[int]:
        return [sample.cpu_percent_scaled for sample in self._series.get(process_id, ())]

    def memory_series(self, process_id: int) -> list[int]:
        return [sample.memory_kb for sample in self._series.get(process_id, ())]

    def latest(self, process_id: int) -> MetricSample | None:
        buffer = self._series.get(process_id)
        return buffer[-1] if buffer else None
