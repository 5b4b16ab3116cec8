"""Error taxonomy for the embedded authorization service.

Every error raised to callers of the handle derives from
``EmbeddedFGAError`` and carries a stable ``code`` alongside the message.
``EngineError`` is raised by the engine collaborator itself and is wrapped
by the core before it reaches application code.
"""

from __future__ import annotations

from enum import Enum


class EmbeddedFGAError(Exception):
    """Base class for errors surfaced by the embedded service."""

    def __init__(self, message: str, code: str = "embedded_fga_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ConfigInvalidError(EmbeddedFGAError):
    """Raised when configuration is missing or malformed, before any I/O."""

    def __init__(self, problems: list[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = problems
        super().__init__(
            "Invalid configuration: " + "; ".join(problems), "config_invalid"
        )


class DatastoreUnreachableError(EmbeddedFGAError):
    """Raised when the datastore driver cannot be opened at all."""

    def __init__(self, reason: str):
        super().__init__(f"Failed to open datastore: {reason}", "datastore_unreachable")


class BackendConnectionError(EmbeddedFGAError):
    """Raised on a hard failure reaching the datastore or the engine."""

    def __init__(self, target: str, reason: str):
        self.target = target
        super().__init__(f"Error reaching {target}: {reason}", "connection_error")


class ReadinessTimeoutError(EmbeddedFGAError):
    """Raised when a target stays not-ready past its deadline."""

    def __init__(self, target: str, timeout: float, last_message: str = ""):
        self.target = target
        self.timeout = timeout
        self.last_message = last_message
        message = f"Timed out after {timeout:.1f}s waiting for {target} to be ready"
        if last_message:
            message += f" (last status: {last_message})"
        super().__init__(message, "readiness_timeout")


class MigrationFailedError(EmbeddedFGAError):
    """Raised when the schema migration fails. Never retried."""

    def __init__(self, reason: str):
        super().__init__(f"Failed to run migrations: {reason}", "migration_failed")


class ModelParseError(EmbeddedFGAError):
    """Raised when the authorization model DSL cannot be parsed."""

    def __init__(self, reason: str, line: int | None = None):
        self.line = line
        if line is not None:
            reason = f"line {line}: {reason}"
        super().__init__(f"Failed to parse authorization model: {reason}", "model_parse_error")


class ProvisioningError(EmbeddedFGAError):
    """Raised when store or model lookup/creation fails."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        super().__init__(f"Failed to {operation}: {reason}", "provisioning_error")


class WriteConflictError(EmbeddedFGAError):
    """Raised when a written fact already exists and conflicts are not ignored."""

    def __init__(self, reason: str):
        super().__init__(f"Failed to write facts: {reason}", "write_conflict")


class EmptyInputError(EmbeddedFGAError):
    """Raised when a write is attempted with no facts."""

    def __init__(self):
        super().__init__("At least one fact is required", "empty_input")


class EngineRequestError(EmbeddedFGAError):
    """Raised when the engine rejects a check or write request."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        super().__init__(f"Failed to {operation}: {reason}", "engine_request_error")


class NotReadyError(EmbeddedFGAError):
    """Raised when the handle is used before bootstrap completed."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Service is not ready (state: {state})", "not_ready")


class AlreadyClosedError(EmbeddedFGAError):
    """Raised when the handle is used after it was closed."""

    def __init__(self):
        super().__init__("Service is already closed", "already_closed")


class EngineErrorCode(str, Enum):
    """Classification of errors raised by the engine collaborator."""

    TUPLE_ALREADY_EXISTS = "tuple_already_exists"
    INVALID_WRITE_INPUT = "invalid_write_input"
    INVALID_CHECK_INPUT = "invalid_check_input"
    STORE_NOT_FOUND = "store_not_found"
    MODEL_NOT_FOUND = "authorization_model_not_found"
    RESOLUTION_TOO_COMPLEX = "resolution_too_complex"
    EXCEEDED_BATCH_LIMIT = "exceeded_batch_limit"
    DATASTORE_UNAVAILABLE = "datastore_unavailable"
    ENGINE_CLOSED = "engine_closed"


class EngineError(Exception):
    """Raised by the engine collaborator."""

    def __init__(self, message: str, code: EngineErrorCode):
        self.message = message
        self.code = code
        super().__init__(message)
