# outcome.py
# Explicit success/failure results for calls into external services.

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Rationale and image work never share workers with embedding or vector queries.
EXTERNAL_WORKERS = 8
RATIONALE_WORKERS = 4
IMAGE_WORKERS = 4

EXTERNAL_EXECUTOR = ThreadPoolExecutor(max_workers=EXTERNAL_WORKERS, thread_name_prefix="external")
RATIONALE_EXECUTOR = ThreadPoolExecutor(max_workers=RATIONALE_WORKERS, thread_name_prefix="rationale")
IMAGE_EXECUTOR = ThreadPoolExecutor(max_workers=IMAGE_WORKERS, thread_name_prefix="image")


@dataclass(frozen=True)
class Outcome:
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "Outcome":
        return cls(ok=False, error=error)

    def value_or(self, default: Any) -> Any:
        return self.value if self.ok else default


def attempt(label: str,
            fn: Callable[..., Any],
            *args,
            timeout: Optional[float] = None,
            executor: Optional[ThreadPoolExecutor] = None,
            **kwargs) -> Outcome:
    """
    Run one external call and capture its result as an Outcome.

    With a timeout the call runs on `executor` (EXTERNAL_EXECUTOR by default)
    and is abandoned (not cancelled) once the deadline passes; the worker
    thread finishes in the background.
    """
    try:
        if timeout is None:
            return Outcome.success(fn(*args, **kwargs))
        future = (executor or EXTERNAL_EXECUTOR).submit(fn, *args, **kwargs)
        return Outcome.success(future.result(timeout=timeout))
    except FutureTimeout:
        logger.warning("%s timed out after %.1fs", label, timeout)
        return Outcome.failure(f"{label} timed out after {timeout:.1f}s")
    except Exception as e:
        logger.warning("%s failed: %s", label, e)
        return Outcome.failure(f"{label} failed: {e}")
