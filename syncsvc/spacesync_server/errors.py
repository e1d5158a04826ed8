"""
Error types for SpaceSync Server.

Callers only ever see this small, fixed set of failures:
- SyncError: Base exception
- TransactionExhaustedError: Conflict retries used up (transient)
- MutationGapError: A client's mutations arrived out of sequence
- UnknownSpaceError: Pull against a space that was never written
- StoreUnavailableError: The database cannot be reached
- MutatorError: An application mutator failed
- RequestValidationError: Malformed push/pull body

Invariants:
    - All errors inherit from SyncError
    - Raw store error strings are kept in details, never in the HTTP body
    - retryable tells clients whether trying again later can help
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SyncError(Exception):
    """Base exception for all sync errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        retryable: Whether the same request may succeed later
    """

    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SYNC_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_code": self.code,
            "retryable": self.retryable,
        }


class TransactionExhaustedError(SyncError):
    """Serialization conflicts persisted past the retry budget.

    The request left no partial state behind and can be retried by the
    client later.
    """

    retryable = True

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        super().__init__(
            f"Tried to execute transaction {attempts} times. Giving up.",
            code="TRANSACTION_EXHAUSTED",
            details={"attempts": attempts, "last_error": repr(last_error)},
        )
        self.attempts = attempts
        self.last_error = last_error


class MutationGapError(SyncError):
    """A mutation ID skipped ahead of the client's last applied ID.

    Raised when:
    - Mutation k+2 arrives while k+1 has not been applied
    """

    def __init__(self, client_id: str, expected_id: int, actual_id: int) -> None:
        super().__init__(
            f"Mutation {actual_id} from client {client_id} is from the future "
            f"(expected {expected_id})",
            code="MUTATION_GAP",
            details={
                "client_id": client_id,
                "expected_id": expected_id,
                "actual_id": actual_id,
            },
        )
        self.client_id = client_id
        self.expected_id = expected_id
        self.actual_id = actual_id


class UnknownSpaceError(SyncError):
    """Space has never been written to."""

    def __init__(self, space_id: str) -> None:
        super().__init__(
            f"Unknown space {space_id}",
            code="UNKNOWN_SPACE",
            details={"space_id": space_id},
        )
        self.space_id = space_id


class StoreUnavailableError(SyncError):
    """The backing store cannot be reached.

    Raised when:
    - The pre-flight health probe fails
    - A connection cannot be opened
    """

    retryable = True

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            message,
            code="STORE_UNAVAILABLE",
            details={"cause": repr(cause) if cause else None},
        )


class MutatorError(SyncError):
    """An application mutator raised.

    The whole push batch is rolled back.
    """

    def __init__(
        self,
        message: str,
        mutation_name: str,
        client_id: Optional[str] = None,
        mutation_id: Optional[int] = None,
        code: str = "MUTATOR_ERROR",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={
                "mutation_name": mutation_name,
                "client_id": client_id,
                "mutation_id": mutation_id,
            },
        )
        self.mutation_name = mutation_name
        self.client_id = client_id
        self.mutation_id = mutation_id


class UnknownMutatorError(MutatorError):
    """No mutator is registered under the requested name."""

    def __init__(self, mutation_name: str) -> None:
        super().__init__(
            f"Unknown mutator '{mutation_name}'",
            mutation_name=mutation_name,
            code="UNKNOWN_MUTATOR",
        )


class RequestValidationError(SyncError):
    """Push or pull body failed validation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(
            message,
            code="INVALID_ARGUMENT",
            details={"errors": errors or []},
        )
        self.errors = errors or []
