"""
Custom Exception Hierarchy - Domain-specific error types

Provides clear, typed exceptions for the failure modes of the voting service.
All custom exceptions inherit from BallotboxError for easy catching.

Design Philosophy:
- Exceptions are data: Include context for debugging
- Fail explicitly: Better to raise specific exception than generic
- Catch specifically: Handler can distinguish error types
- Log contextually: Exception attributes enable rich logging
"""

from typing import Optional, Dict, Any


class BallotboxError(Exception):
    """Base exception for all ballotbox errors

    All custom exceptions inherit from this, enabling:
    - Catch all ballotbox errors with single except clause
    - Distinguish our errors from library errors
    - Add common attributes (context)
    - Check if error is retryable via is_retryable property
    """

    # Default: errors are not retryable (permanent failure)
    _retryable: bool = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Check if this error represents a transient failure that should be retried.

        Returns:
            True for transient failures (contention, connection loss)
            False for permanent failures (missing data, bad arguments)
        """
        return self._retryable

    def __str__(self):
        base_msg = super().__str__()
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base_msg} (context: {context_str})"
        return base_msg


# ========== Database Errors ==========


class DatabaseError(BallotboxError):
    """Document store operation failures

    Examples:
    - Query errors
    - Malformed stored documents
    - Transaction rollbacks not caused by contention
    """
    pass


class DatabaseConnectionError(DatabaseError):
    """Failed to establish or maintain document store connection"""
    _retryable = True


class NotFoundError(BallotboxError):
    """Referenced session, vote record, or voter-vote pair does not exist

    Surfaced to the caller as-is; never retried.
    """

    def __init__(self, message: str, resource: Optional[str] = None, identifier: Optional[str] = None):
        self.resource = resource
        self.identifier = identifier
        context = {}
        if resource:
            context['resource'] = resource
        if identifier:
            context['identifier'] = identifier
        super().__init__(message, context)


class TransactionConflict(DatabaseError):
    """A single transaction attempt lost a race on a document it read

    Raised inside the gateway and consumed by its retry loop. Callers only
    see ConflictError once the bounded retries are exhausted.
    """
    _retryable = True

    def __init__(self, message: str, collection: Optional[str] = None, document_id: Optional[str] = None):
        self.collection = collection
        self.document_id = document_id
        context = {}
        if collection:
            context['collection'] = collection
        if document_id:
            context['document_id'] = document_id
        super().__init__(message, context)


class ConflictError(BallotboxError):
    """Transaction could not commit after bounded retries due to contention

    Retryable: the caller may retry the whole operation.
    """
    _retryable = True

    def __init__(self, message: str, attempts: Optional[int] = None):
        self.attempts = attempts
        context = {}
        if attempts:
            context['attempts'] = attempts
        super().__init__(message, context)


# ========== Validation Errors ==========


class InvalidArgumentError(BallotboxError):
    """Missing identifiers or values outside the session's current state

    Examples:
    - Empty session or voter id
    - Option label not present in the session's options
    - Duplicate option label on add or rename

    Raised before any mutation is attempted.
    """

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None):
        self.field = field
        self.value = value

        context = {}
        if field:
            context['field'] = field
        if value is not None:
            context['value'] = str(value)

        super().__init__(message, context)


class VotingClosedError(InvalidArgumentError):
    """Vote attempted on a closed session or outside its voting window"""
    pass


# ========== Audit Errors ==========


class AuditSinkError(BallotboxError):
    """Audit record could not be written

    Internal only: the audit recorder catches it and writes a degraded
    local record instead.
    """

    def __init__(self, message: str, action: Optional[str] = None, original_error: Optional[Exception] = None):
        self.action = action
        self.original_error = original_error
        context = {}
        if action:
            context['action'] = action
        if original_error:
            context['original_error'] = str(original_error)
        super().__init__(message, context)


# ========== Configuration Errors ==========


class ConfigurationError(BallotboxError):
    """Configuration or environment errors

    Examples:
    - Missing required env var
    - Unknown store backend
    """

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        context = {}
        if config_key:
            context['config_key'] = config_key
        super().__init__(message, context)
