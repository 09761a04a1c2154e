# src/face_indexer/core/error_handling.py

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from botocore.exceptions import BotoCoreError, ClientError as BotocoreClientError

from .exceptions import (
    CollectionNotFoundError,
    FaceIndexerError,
    FaceServiceError,
    PhotoSkipped,
)

RETRYABLE_FACE_SERVICE_ERROR_CODES = (
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "LimitExceededException",
    "InternalServerError",
)


class ErrorDisposition(Enum):
    """How the orchestrator reacts to a per-photo error."""

    FATAL = "fatal"  # abort the whole job
    SKIP = "skip"  # business condition, resets the consecutive error counter
    FAILURE = "failure"  # counts towards the consecutive error threshold


def classify_error(exc: BaseException) -> ErrorDisposition:
    """
    Classify an exception raised while processing one photo.

    A missing collection means it was deleted under the running job and
    nothing after it can succeed. Known business skips (no face, image too
    large, malformed photo record) are expected in real galleries. Anything
    else, including downloads that exhausted their retries, is a failure.
    """
    if isinstance(exc, CollectionNotFoundError):
        return ErrorDisposition.FATAL
    if isinstance(exc, PhotoSkipped):
        return ErrorDisposition.SKIP
    return ErrorDisposition.FAILURE


def translate_client_error(exc: BotocoreClientError, operation: str) -> FaceServiceError:
    """Map a botocore ClientError onto the face indexer exception hierarchy."""
    error = exc.response.get("Error", {})
    code = error.get("Code", "")
    message = error.get("Message", str(exc))
    if code == "ResourceNotFoundException":
        return CollectionNotFoundError(f"{operation}: {message}", code=code)
    return FaceServiceError(f"{operation} failed ({code}): {message}", code=code)


def with_error_handling(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """
    Decorator for async face service calls.

    Botocore errors become FaceServiceError (or CollectionNotFoundError);
    face indexer errors pass through untouched.
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger = logging.getLogger(func.__module__ + "." + func.__name__)
        try:
            return await func(*args, **kwargs)
        except FaceIndexerError:
            raise
        except BotocoreClientError as e:
            logger.error(f"Error in '{func.__name__}': {e}")
            raise translate_client_error(e, func.__name__) from e
        except BotoCoreError as e:
            logger.error(f"Error in '{func.__name__}': {e}", exc_info=True)
            raise FaceServiceError(f"{func.__name__} failed: {e}") from e

    return wrapper


def linear_backoff(base: float) -> Callable[[int], float]:
    """Delay of ``base * attempt`` seconds after the given failed attempt."""
    return lambda attempt: base * attempt


def exponential_backoff(initial: float, factor: float = 2.0) -> Callable[[int], float]:
    return lambda attempt: initial * factor ** (attempt - 1)


@dataclass
class RetryPolicy:
    """Max attempts, backoff function and retryable-error predicate."""

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=lambda: linear_backoff(2.0))
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    should_retry: Optional[Callable[[BaseException], bool]] = None

    def is_retryable(self, exc: BaseException) -> bool:
        if not isinstance(exc, self.retry_on):
            return False
        if self.should_retry is not None:
            return self.should_retry(exc)
        return True


def is_throttling_error(exc: BaseException) -> bool:
    if isinstance(exc, BotocoreClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        return code in RETRYABLE_FACE_SERVICE_ERROR_CODES
    return isinstance(exc, FaceServiceError) and exc.code in RETRYABLE_FACE_SERVICE_ERROR_CODES


async def call_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> Any:
    """
    Await ``func`` until it succeeds or the policy gives up.

    The last exception is re-raised once attempts are exhausted or an
    error is not retryable.
    """
    name = getattr(func, "__name__", "operation")
    logger = logging.getLogger(f"{getattr(func, '__module__', __name__)}.{name}")
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not policy.is_retryable(e):
                logger.error(f"'{name}' failed with non-retryable error: {e}")
                raise
            if attempt >= policy.max_attempts:
                logger.error(
                    f"'{name}' failed after {policy.max_attempts} attempts. Error: {e}"
                )
                raise
            delay = policy.backoff(attempt)
            logger.info(
                f"'{name}' failed. Attempt {attempt}/{policy.max_attempts}. "
                f"Retrying in {delay:.2f}s. Error: {e}"
            )
            await sleep(delay)


class BatchOperationContextManager:
    """
    Context manager for a job to collect and summarize per-photo errors.
    """

    def __init__(self, operation_name="Batch Operation", logger=None):
        self.operation_name = operation_name
        self.errors: List[Dict[str, str]] = []
        self.logger = logger or logging.getLogger(
            self.__class__.__module__ + "." + self.__class__.__name__
        )

    def __enter__(self):
        self.logger.info(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
            )
        elif self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                self.logger.error(
                    f"  Error {i+1}/{len(self.errors)} for item "
                    f"'{error_detail['item']}': {error_detail['error']}"
                )
        else:
            self.logger.info(f"{self.operation_name} completed successfully.")
        return False

    def add_error(self, error_message: str, item_identifier: str = "Unknown item"):
        """
        Report an error for a specific item inside the 'with' block.

        Args:
            error_message (str): The error message or exception string.
            item_identifier (str): A string identifying the item that failed.
        """
        self.errors.append({"item": item_identifier, "error": str(error_message)})
        self.logger.debug(
            f"Error added for item '{item_identifier}' in {self.operation_name}: {error_message}"
        )
