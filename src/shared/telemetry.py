import logging
import sys
import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from functools import wraps
from typing import Any, ParamSpec, TypeVar, cast

from opentelemetry import trace

# --- Prometheus Imports ---
from prometheus_client import REGISTRY, Counter, Histogram

# --- Context for Correlation IDs ---
correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="system")

tracer = trace.get_tracer("quiz")

C = TypeVar("C")


def _registered(name: str, factory: Callable[[], C]) -> C:
    """Streamlit reruns re-import modules; reuse a collector that already exists."""
    try:
        return factory()
    except ValueError:
        return cast(C, REGISTRY._names_to_collectors[name])


# --- Prometheus Metric Definitions ---
METHOD_DURATION: Histogram = _registered(
    "quiz_method_duration_seconds",
    lambda: Histogram(
        "quiz_method_duration_seconds",
        "Time spent in quiz engine methods",
        ["component", "method"],
    ),
)

SUBMISSION_OUTCOMES: Counter = _registered(
    "quiz_submissions",
    lambda: Counter(
        "quiz_submissions",
        "Finished attempts by how their score was settled",
        ["outcome"],
    ),
)

P = ParamSpec("P")
R = TypeVar("R")


def measure_time(metric_name: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator for instance methods: one span, one histogram observation and
    one log line per call, labelled with the owning class. Exceptions are
    recorded on the span, logged and re-raised.
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            self_obj: Any = args[0] if args else None
            component = self_obj.__class__.__name__ if self_obj else "Unknown"
            method = func.__name__
            telemetry = getattr(self_obj, "telemetry", None)

            with tracer.start_as_current_span(f"{component}.{method}") as span:
                span.set_attribute("quiz.correlation_id", correlation_id_ctx.get())
                start = time.perf_counter()
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    span.record_exception(e)
                    if telemetry:
                        telemetry.log_error(
                            f"💥 Failed: {metric_name}",
                            e,
                            duration_ms=round((time.perf_counter() - start) * 1000, 2),
                        )
                    raise
                finally:
                    duration = time.perf_counter() - start
                    METHOD_DURATION.labels(component=component, method=method).observe(
                        duration
                    )
                    if telemetry:
                        telemetry.log_debug(
                            f"⏱️ {metric_name}", duration_ms=round(duration * 1000, 2)
                        )

        return wrapper

    return decorator


class Telemetry:
    """
    Facade for Logs, Metrics and Tracing.
    Log lines are prefixed with the correlation id of the current user action,
    so one click can be followed across components.
    """

    def __init__(self, component_name: str) -> None:
        self.component = component_name
        self.logger: logging.Logger
        self._setup_logger()

    def _setup_logger(self) -> None:
        self.logger = logging.getLogger(f"quiz.{self.component}")

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

    # Streamlit may pickle session objects; loggers hold locks.
    def __getstate__(self) -> dict[str, Any]:
        state = self.__dict__.copy()
        state.pop("logger", None)
        return state

    def __setstate__(self, state: dict[str, Any]) -> None:
        self.__dict__.update(state)
        self._setup_logger()

    @staticmethod
    def start_trace() -> str:
        c_id = uuid.uuid4().hex[:8]
        correlation_id_ctx.set(c_id)
        return c_id

    @staticmethod
    def get_trace_id() -> str:
        return correlation_id_ctx.get()

    @staticmethod
    def count_submission(outcome: str) -> None:
        SUBMISSION_OUTCOMES.labels(outcome=outcome).inc()

    def _format(self, event: str, fields: dict[str, Any]) -> str:
        prefix = f"[{self.get_trace_id()}] {event}"
        return f"{prefix} | {fields}" if fields else prefix

    def log_debug(self, event: str, **fields: Any) -> None:
        self.logger.debug(self._format(event, fields))

    def log_info(self, event: str, **fields: Any) -> None:
        self.logger.info(self._format(event, fields))

    def log_warning(self, event: str, **fields: Any) -> None:
        self.logger.warning(self._format(f"⚠️ {event}", fields))

    def log_error(self, event: str, error: Exception, **fields: Any) -> None:
        self.logger.error(self._format(f"❌ {event} | Error: {error}", fields), exc_info=error)
