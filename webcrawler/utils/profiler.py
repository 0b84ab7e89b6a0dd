"""
Method timing for crawler components, exported as Prometheus metrics.
"""

import functools
import inspect
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Any, Callable, Dict, TextIO, Union

from prometheus_client import CollectorRegistry, Histogram, generate_latest, start_http_server


PROFILED_ATTR = '_profiled'


def profiled(func: Callable) -> Callable:
    """Mark a method to be timed by Profiler.wrap()."""
    setattr(func, PROFILED_ATTR, True)
    return func


def _is_profiled(member: Any) -> bool:
    return callable(member) and getattr(member, PROFILED_ATTR, False)


def format_duration(duration: timedelta) -> str:
    """Render a duration as '<m>m <s>s <ms>ms'."""
    total_ms = duration // timedelta(milliseconds=1)
    minutes, remainder = divmod(total_ms, 60_000)
    seconds, millis = divmod(remainder, 1000)
    return f"{minutes}m {seconds}s {millis}ms"


class ProfilingState:
    """Thread-safe record of the total time spent in each profiled method."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: Dict[str, timedelta] = {}

    def record(self, method_name: str, elapsed: timedelta):
        with self._lock:
            self._data[method_name] = self._data.get(method_name, timedelta()) + elapsed

    def snapshot(self) -> Dict[str, timedelta]:
        with self._lock:
            return dict(self._data)

    def write(self, stream: TextIO):
        for method_name, elapsed in sorted(self.snapshot().items()):
            stream.write(f"{method_name} took {format_duration(elapsed)}\n")


class _ProfilingProxy:
    """Forwards attribute access to a delegate, timing profiled methods."""

    def __init__(self, profiler: 'Profiler', delegate: Any):
        object.__setattr__(self, '_profiler', profiler)
        object.__setattr__(self, '_delegate', delegate)

    def __getattr__(self, name: str):
        member = getattr(self._delegate, name)
        if not _is_profiled(member):
            return member

        method_name = f"{type(self._delegate).__qualname__}#{name}"
        profiler = self._profiler

        if inspect.iscoroutinefunction(member):
            @functools.wraps(member)
            async def timed_coroutine(*args, **kwargs):
                start = time.perf_counter()
                try:
                    return await member(*args, **kwargs)
                finally:
                    profiler.record(method_name, time.perf_counter() - start)
            return timed_coroutine

        @functools.wraps(member)
        def timed(*args, **kwargs):
            start = time.perf_counter()
            try:
                return member(*args, **kwargs)
            finally:
                profiler.record(method_name, time.perf_counter() - start)
        return timed

    def __setattr__(self, name: str, value: Any):
        setattr(self._delegate, name, value)

    def __repr__(self) -> str:
        return f"<profiled {self._delegate!r}>"


class Profiler:
    """
    Times methods marked with @profiled on wrapped objects.

    Totals are kept per 'Class#method' for the text report, and each call is
    also observed into a Prometheus histogram on this profiler's registry.
    """

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.logger = logging.getLogger(__name__)
        self.state = ProfilingState()
        self.start_time = clock()

        self.registry = CollectorRegistry()
        self.method_duration = Histogram(
            'webcrawler_method_duration_seconds',
            'Time spent in profiled crawler methods',
            ['method'],
            registry=self.registry
        )

    def wrap(self, delegate: Any) -> Any:
        """
        Return a proxy that times the delegate's @profiled methods.

        Raises:
            ValueError: if the delegate's class has no profiled methods
        """
        if delegate is None:
            raise ValueError("The delegate instance must not be None")

        klass = type(delegate)
        if not any(_is_profiled(member) for _, member in inspect.getmembers(klass)):
            raise ValueError(f"{klass.__qualname__} has no @profiled methods")

        return _ProfilingProxy(self, delegate)

    def record(self, method_name: str, elapsed_seconds: float):
        self.state.record(method_name, timedelta(seconds=elapsed_seconds))
        self.method_duration.labels(method=method_name).observe(elapsed_seconds)
        self.logger.debug(f"{method_name} took {elapsed_seconds:.3f}s")

    def write_data(self, path: Union[str, Path]):
        """Append profiling data to the file at path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'a', encoding='utf-8') as file:
            self.write_data_to(file)
        self.logger.info(f"Profile data written to {path}")

    def write_data_to(self, stream: TextIO):
        """Write profiling data to an open stream, leaving it open."""
        stream.write(f"Run at {format_datetime(self.start_time, usegmt=True)}\n")
        self.state.write(stream)
        stream.write("\n")

    def export_metrics(self) -> str:
        """Prometheus text exposition of the method timings."""
        return generate_latest(self.registry).decode('utf-8')

    def start_metrics_server(self, port: int):
        """Start Prometheus metrics HTTP server."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {port}")

