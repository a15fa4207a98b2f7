"""Error taxonomy and retry helpers for the knowledge base core."""

import asyncio
import functools
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Type

from ..logging_config import get_logger, log_error

logger = get_logger(__name__)


class KnowledgeBaseError(Exception):
    """Base exception for all kbcore errors."""

    error_code = "kbcore_error"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "error_type": type(self).__name__,
            "error_message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class PersistenceError(KnowledgeBaseError):
    """The document store failed a read or a commit.

    ``retryable`` is False for failures that repeating cannot fix, such as
    creating a document that already exists.
    """

    error_code = "persistence_failure"

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        retryable: bool = True,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context=context)
        self.collection = collection
        self.retryable = retryable


class EnrichmentError(KnowledgeBaseError):
    """The enrichment service failed. Callers treat this as "no data"."""

    error_code = "enrichment_failure"

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(message, context={"query": query} if query else None)
        self.query = query


class EntityNotFoundError(KnowledgeBaseError):
    error_code = "entity_not_found"

    def __init__(self, entity_id: str):
        super().__init__(f"Entity not found: {entity_id}", context={"entity_id": entity_id})
        self.entity_id = entity_id


class MergeValidationError(KnowledgeBaseError):
    """A merge request that can never succeed (self-merge, type mismatch)."""

    error_code = "invalid_merge"


class MergeTransactionError(KnowledgeBaseError):
    """A merge failed as a whole and nothing was committed.

    ``step`` names the stage that failed. Callers retry the entire merge,
    never a subset of it.
    """

    error_code = "merge_failed"

    def __init__(
        self,
        message: str,
        step: str,
        keeper_id: Optional[str] = None,
        loser_ids: Optional[List[str]] = None,
    ):
        super().__init__(message, context={"step": step, "keeper_id": keeper_id})
        self.step = step
        self.keeper_id = keeper_id
        self.loser_ids = loser_ids or []


class ConfigurationError(KnowledgeBaseError):
    error_code = "invalid_config"

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message, context={"config_key": config_key} if config_key else None)
        self.config_key = config_key


def is_retryable(error: Exception) -> bool:
    """Whether repeating the failed call could succeed.

    A failed merge is never retried from inside; its caller repeats the
    whole merge.
    """
    if isinstance(error, PersistenceError):
        return error.retryable
    if isinstance(error, KnowledgeBaseError):
        return False
    return isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError))


def retry_on_error(
    max_attempts: int = 3,
    delay: float = 0.5,
    backoff_factor: float = 2.0,
):
    """Decorator retrying a coroutine function on retryable errors.

    Args:
        max_attempts: Maximum number of attempts, the first one included
        delay: Initial delay between attempts in seconds
        backoff_factor: Factor applied to the delay after each attempt
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            current_delay = delay
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable(e):
                        raise
                    if attempt >= max_attempts:
                        log_error(
                            __name__,
                            f"{func.__qualname__} gave up after {attempt} attempts",
                            e,
                            attempts=attempt,
                        )
                        raise

                    logger.warning(
                        f"🔁 {func.__qualname__} attempt {attempt}/{max_attempts} failed, "
                        f"retrying in {current_delay}s",
                        extra={"error": str(e), "error_type": type(e).__name__, "attempt": attempt},
                    )
                    await asyncio.sleep(current_delay)
                    current_delay *= backoff_factor
                    attempt += 1

        return wrapper
    return decorator


@contextmanager
def ErrorContext(
    operation: str,
    convert_to: Type[KnowledgeBaseError] = KnowledgeBaseError,
    **context
):
    """Attach operation context to errors raised in the block.

    kbcore errors are re-raised with the context merged in. Anything else
    is wrapped in ``convert_to`` with the original chained as its cause.

    Args:
        operation: Name of the operation being performed
        convert_to: Error type foreign exceptions are wrapped in
        **context: Additional context key-value pairs
    """
    full_context = {"operation": operation, **context}

    try:
        yield
    except KnowledgeBaseError as e:
        e.context.update(full_context)
        raise
    except Exception as e:
        raise convert_to(
            f"Error during {operation}: {e}",
            context={**full_context, "original_error": type(e).__name__},
        ) from e
