import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "ValidationError"
    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    ALREADY_DISTRIBUTED = "AlreadyDistributed"
    INVALID_TRANSITION = "InvalidTransition"
    SIGNATURE_MISMATCH = "SignatureMismatch"
    STORE_FAILURE = "StoreFailure"
    GATEWAY_FAILURE = "GatewayFailure"


class ReconciliationError(Exception):
    kind = ErrorKind.VALIDATION_ERROR


class PaymentValidationError(ReconciliationError):
    kind = ErrorKind.VALIDATION_ERROR


class NotFoundError(ReconciliationError):
    kind = ErrorKind.NOT_FOUND


class AlreadyExistsError(ReconciliationError):
    kind = ErrorKind.ALREADY_EXISTS


class AlreadyDistributedError(ReconciliationError):
    kind = ErrorKind.ALREADY_DISTRIBUTED


class InvalidStateTransitionError(ReconciliationError):
    kind = ErrorKind.INVALID_TRANSITION


class SignatureMismatchError(ReconciliationError):
    kind = ErrorKind.SIGNATURE_MISMATCH


class GatewayError(ReconciliationError):
    kind = ErrorKind.GATEWAY_FAILURE


class StoreError(Exception):
    """Raised by a ledger store when the underlying persistence fails."""


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an engine operation: either a value or a ServiceError."""

    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Result[T]":
        return cls(error=ServiceError(kind=kind, message=message))

    @classmethod
    def from_exception(cls, exc: ReconciliationError) -> "Result[T]":
        return cls.failure(exc.kind, str(exc))

    def unwrap(self) -> T:
        if self.error is not None:
            raise ValueError(f"{self.error.kind.value}: {self.error.message}")
        return self.value


def run_operation(logger: logging.Logger, action: str, func: Callable[..., T], *args, **kwargs) -> Result[T]:
    """Run ``func`` and fold domain and store failures into a Result."""
    try:
        return Result.success(func(*args, **kwargs))
    except ReconciliationError as e:
        logger.info("%s rejected (%s): %s", action, e.kind.value, e)
        return Result.from_exception(e)
    except StoreError:
        logger.exception("Store failure while trying to %s", action)
        return Result.failure(ErrorKind.STORE_FAILURE, f"Failed to {action}")
