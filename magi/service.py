"""
Caller-facing operations; every result is a uniform ``{ok, ...}`` envelope.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ParamSpec

from .errors import (
    ArtifactNotFoundError,
    DependencyNotReadyError,
    InvalidRequestError,
    MagiError,
    MissingCredentialError,
    SessionNotFoundError,
)
from .live_url import normalize_live_url
from .models import ArtifactStatus, MessageRole, Provider, SessionStatus
from .providers import Credentials, ProviderClient
from .repository import ChunkStore, SessionRepository
from .workflow import DeliberationEngine

logger = logging.getLogger(__name__)

P = ParamSpec("P")


@dataclass
class Envelope:
    ok: bool
    status_code: int = 200
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def success(cls, status_code: int = 200, **data: Any) -> "Envelope":
        return cls(ok=True, status_code=status_code, data=data)

    @classmethod
    def failure(cls, error: str, status_code: int, **data: Any) -> "Envelope":
        return cls(ok=False, status_code=status_code, data=data, error=error)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": self.ok, **self.data}
        if self.error is not None:
            body["error"] = self.error
        return body


def enveloped(
    func: Callable[P, Awaitable[Envelope]],
) -> Callable[P, Awaitable[Envelope]]:
    """Turn raised errors into failure envelopes with their status code."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Envelope:
        try:
            return await func(*args, **kwargs)
        except MagiError as exc:
            return Envelope.failure(exc.message, exc.status_code)
        except Exception as exc:
            logger.exception("Unexpected error in %s", func.__name__)
            return Envelope.failure(str(exc) or "Unexpected error", 500)

    return wrapper


class MagiService:
    """Session lifecycle and step triggering for one deployment."""

    def __init__(
        self,
        repository: SessionRepository,
        chunk_store: ChunkStore | None = None,
        *,
        engine: DeliberationEngine | None = None,
        providers: ProviderClient | None = None,
    ) -> None:
        self.repository = repository
        self.chunk_store = chunk_store
        self.providers = providers or ProviderClient()
        self.engine = engine or DeliberationEngine(
            repository, self.providers, chunk_store=chunk_store
        )

    async def aclose(self) -> None:
        await self.providers.aclose()

    @enveloped
    async def create_session(
        self,
        user_id: str | None,
        question: str | None,
        *,
        artifact_id: str | None = None,
        live_url: str | None = None,
    ) -> Envelope:
        question = (question or "").strip()
        if not user_id or not question:
            raise InvalidRequestError("Missing userId or question")

        normalized_url = None
        if live_url and live_url.strip():
            normalized_url = normalize_live_url(live_url)
            if not normalized_url:
                raise InvalidRequestError("Invalid live URL")

        if artifact_id:
            if self.chunk_store is None:
                raise ArtifactNotFoundError(artifact_id)
            artifact = await self.chunk_store.get_artifact_by_id(artifact_id)
            if artifact is None or artifact.user_id != user_id:
                raise ArtifactNotFoundError(artifact_id)
            if artifact.status != ArtifactStatus.READY.value:
                raise DependencyNotReadyError("Uploaded bundle is still processing")

        session = await self.repository.create_session(
            user_id, question, artifact_id=artifact_id, live_url=normalized_url
        )
        await self.repository.add_message(session.id, MessageRole.USER, question)
        await self.repository.set_session_status(session.id, SessionStatus.RUNNING.value)
        logger.info("Created session %s for user %s", session.id, user_id)
        return Envelope.success(
            session_id=session.id,
            artifact_id=artifact_id,
            live_url=normalized_url,
        )

    @enveloped
    async def trigger_step(self, session_id: str, body: Mapping[str, Any] | None) -> Envelope:
        body = body or {}
        raw_credentials = body.get("credentials") or body.get("keys") or {}
        if not isinstance(raw_credentials, Mapping):
            raise InvalidRequestError("credentials must be an object")

        outcome = await self.engine.run_step(
            session_id, body.get("step"), Credentials.from_mapping(raw_credentials)
        )
        data = outcome.to_dict()
        data.pop("ok")
        error = data.pop("error", None)
        if outcome.ok:
            return Envelope.success(**data)
        return Envelope.failure(error or "Step failed", outcome.result.status_code, **data)

    @enveloped
    async def get_session(self, session_id: str) -> Envelope:
        snapshot = await self.repository.get_session_full(session_id)
        if snapshot.session is None:
            raise SessionNotFoundError(session_id)
        return Envelope.success(**snapshot.to_dict())

    @enveloped
    async def list_sessions(self, user_id: str | None) -> Envelope:
        if not user_id:
            raise InvalidRequestError("Missing userId")
        return Envelope.success(sessions=await self.repository.list_sessions(user_id))

    @enveloped
    async def list_agents(self) -> Envelope:
        agents = await self.repository.list_agents()
        return Envelope.success(agents=[a.to_dict() for a in agents])

    @enveloped
    async def ping_provider(self, provider: str | None, api_key: str | None) -> Envelope:
        if provider == "xai":
            provider = Provider.GROK.value
        try:
            resolved = Provider(provider)
        except ValueError as exc:
            raise InvalidRequestError(f"Unknown provider: {provider}") from exc
        if not api_key:
            raise MissingCredentialError(resolved.value)
        reachable = await self.providers.ping(resolved, api_key)
        return Envelope.success(provider=resolved.value, reachable=reachable)
