"""Retry logic with exponential backoff and call timeouts"""

import time
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Any, Optional, Tuple, Type
from bouwdepot_validator.utils.logging import get_logger
from bouwdepot_validator.utils.errors import ValidatorError, PipelineCancelled

logger = get_logger(__name__)

# Shared pool for bounded external calls; abandoned calls finish in the background
_call_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="external-call")


def call_with_timeout(func: Callable, timeout: Optional[float], *args, **kwargs) -> Any:
    """
    Run func with an upper bound on wall-clock time.

    Raises:
        TimeoutError: If func does not return within timeout seconds
    """
    if not timeout:
        return func(*args, **kwargs)

    future = _call_executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        raise TimeoutError(f"{getattr(func, '__name__', 'call')} timed out after {timeout}s")


def retry_with_exponential_backoff(
    func: Callable,
    max_retries: int = 3,
    base_delay: float = 1,
    max_delay: float = 8,
    *args,
    timeout: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    error_cls: Type[ValidatorError] = ValidatorError,
    cancel_event: Optional[threading.Event] = None,
    **kwargs
) -> Any:
    """
    Retry function with exponential backoff

    Args:
        func: Function to retry
        max_retries: Maximum attempts
        base_delay: Base delay in seconds
        max_delay: Max delay cap in seconds
        timeout: Per-attempt timeout in seconds (None = unbounded)
        retry_on: Exception types that trigger another attempt
        error_cls: Error raised once all attempts are exhausted
        cancel_event: Stops retrying once set
        *args, **kwargs: Arguments to pass to func

    Returns:
        Function result

    Raises:
        error_cls: If all retries exhausted
        PipelineCancelled: If cancel_event is set between attempts
    """
    for attempt in range(max_retries):
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled(f"Cancelled before attempt {attempt + 1}")

        try:
            return call_with_timeout(func, timeout, *args, **kwargs)

        except retry_on as e:
            if attempt == max_retries - 1:
                logger.error(f"All {max_retries} retry attempts exhausted")
                raise error_cls(f"Failed after {max_retries} attempts: {e}") from e

            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay}s: {e}")
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise PipelineCancelled(f"Cancelled while waiting to retry: {e}")
            else:
                time.sleep(delay)
