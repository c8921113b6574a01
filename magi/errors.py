"""Error types and helpers for the deliberation engine."""

from __future__ import annotations

import re


class MagiError(Exception):
    """Base class for every error the engine reports to callers."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(MagiError):
    status_code = 400


class InvalidStepError(InvalidRequestError):
    def __init__(self, step: object) -> None:
        super().__init__(f"Invalid step: {step!r}")
        self.step = step


class NotFoundError(MagiError):
    status_code = 404


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found")
        self.session_id = session_id


class ArtifactNotFoundError(NotFoundError):
    def __init__(self, artifact_id: str) -> None:
        super().__init__("Uploaded bundle not found")
        self.artifact_id = artifact_id


class DependencyNotReadyError(MagiError):
    status_code = 409


class ConfigurationError(MagiError):
    status_code = 400


class MissingCredentialError(ConfigurationError):
    """Raised before any network call when the agent's provider has no key."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Missing key for {provider}")
        self.provider = provider


class ProviderError(MagiError):
    """Non-2xx status or malformed payload from a model provider."""

    def __init__(self, message: str, *, provider: str, status: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status


class ProviderTimeoutError(ProviderError):
    def __init__(self, provider: str, timeout_seconds: float) -> None:
        ms = int(timeout_seconds * 1000)
        super().__init__(f"{provider} timeout after {ms}ms", provider=provider)
        self.timeout_seconds = timeout_seconds


class StorageError(MagiError):
    """Raised when the session repository or chunk store fails."""


class SchemaNotInitializedError(StorageError):
    """Raised when the database schema/migrations have not been applied."""


class ProposalStepError(MagiError):
    """A proposal could not be produced; fatal to the whole propose step."""

    def __init__(self, agent_name: str, reason: str) -> None:
        super().__init__(f"[{agent_name}] proposal failed: {reason}")
        self.agent_name = agent_name
        self.reason = reason


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        message = str(e)
        match = _PG_MISSING_RELATION_RE.search(message) or _SQLITE_MISSING_TABLE_RE.search(message)
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table / missing-schema error."""
    if missing_table_name(exc):
        return True

    # Fallback for drivers that don't format errors consistently.
    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
        if "does not exist" in message and "relation" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""

    lines: list[str] = [
        f"Database schema is not initialized{table_hint}.",
        "Run: `alembic upgrade head`",
        "Or validate with: `magi schema-check`",
    ]
    return "\n".join(lines)
