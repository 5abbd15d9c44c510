"""
Per-stage profiling of kernel dispatches and console formatting of results.
"""

import time
from dataclasses import dataclass
from typing import Iterable, List, Sequence


@dataclass(frozen=True)
class ProfilingEvent:
    """Start/end timestamps (ns) bounding one kernel dispatch."""
    stage: str
    start_ns: int
    end_ns: int

    @property
    def elapsed_ns(self) -> int:
        return self.end_ns - self.start_ns

    @property
    def elapsed_us(self) -> float:
        return self.elapsed_ns / 1000.0


def timestamp_ns() -> int:
    """Monotonic timestamp used for profiling events."""
    return time.perf_counter_ns()


class Profiler:
    """Collects profiling events and renders elapsed times."""

    def __init__(self, events: Iterable[ProfilingEvent] = ()) -> None:
        self._events: List[ProfilingEvent] = list(events)

    def record(self, event: ProfilingEvent) -> ProfilingEvent:
        self._events.append(event)
        return event

    def extend(self, events: Iterable[ProfilingEvent]) -> None:
        for event in events:
            self.record(event)

    @property
    def events(self) -> List[ProfilingEvent]:
        return list(self._events)

    @property
    def total_ns(self) -> int:
        return sum(event.elapsed_ns for event in self._events)

    def clear(self) -> None:
        self._events.clear()

    def render(self) -> str:
        """One line per event plus a total, in nanoseconds and microseconds."""
        lines = [
            f"{event.stage} kernel execution time [ns]: {event.elapsed_ns} ({event.elapsed_us:.3f} us)"
            for event in self._events
        ]
        total = self.total_ns
        lines.append(f"Total kernel execution time [ns]: {total} ({total / 1000.0:.3f} us)")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._events)


def format_array(name: str, values: Sequence[int]) -> str:
    """Render an array as ``name = [v0, v1, ...]``."""
    return f"{name} = [{', '.join(str(int(v)) for v in values)}]"
