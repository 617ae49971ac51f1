"""
Bounded calls to external collaborators.

Every call into the Source Ledger Reader or the Event Publisher goes through
``bounded_call`` so that no operation blocks indefinitely:

    records = bounded_call(
        reader.query_records, client_id, period,
        collaborator="source_ledger", timeout_seconds=10.0,
    )

The call runs on a short-lived worker thread with the caller's context
variables (LogContext) copied in.  On timeout the worker is abandoned and
UpstreamTimeoutError is raised; any other exception that is not already a
ComplianceKernelError is re-raised as UpstreamUnavailableError.
"""

import contextvars
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, TypeVar

from compliance_kernel.exceptions import (
    ComplianceKernelError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from compliance_kernel.logging_config import get_logger

logger = get_logger("utils.timeouts")

T = TypeVar("T")


def bounded_call(
    fn: Callable[..., T],
    *args: Any,
    collaborator: str,
    timeout_seconds: float,
    **kwargs: Any,
) -> T:
    """Run ``fn(*args, **kwargs)`` with a hard wall-clock budget."""
    ctx = contextvars.copy_context()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"bounded-{collaborator}")
    future = executor.submit(ctx.run, fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        logger.warning(
            "upstream_timeout",
            extra={"collaborator": collaborator, "timeout_seconds": timeout_seconds},
        )
        raise UpstreamTimeoutError(collaborator, timeout_seconds) from None
    except ComplianceKernelError:
        raise
    except Exception as exc:
        logger.warning(
            "upstream_unavailable",
            extra={"collaborator": collaborator, "cause": type(exc).__name__},
        )
        raise UpstreamUnavailableError(collaborator, str(exc)) from exc
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
