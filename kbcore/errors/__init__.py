"""Error handling module for the knowledge base core."""

from .handlers import (
    KnowledgeBaseError,
    PersistenceError,
    EnrichmentError,
    EntityNotFoundError,
    MergeValidationError,
    MergeTransactionError,
    ConfigurationError,
    ErrorContext,
    is_retryable,
    retry_on_error,
)

__all__ = [
    "KnowledgeBaseError",
    "PersistenceError",
    "EnrichmentError",
    "EntityNotFoundError",
    "MergeValidationError",
    "MergeTransactionError",
    "ConfigurationError",
    "ErrorContext",
    "is_retryable",
    "retry_on_error",
]
