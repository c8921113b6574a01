"""
Bounded context assembly: ranked code chunks plus a live-site snapshot.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from .config import settings
from .live_context import build_live_url_context
from .models import CodeArtifact, CodeChunk
from .repository import ChunkStore

logger = logging.getLogger(__name__)

PRIORITY_SUFFIXES = (".html", ".htm", ".php", ".phtml", ".blade.php", ".ctp")
PRIORITY_LANGUAGES = ("html", "php")
SNIPPET_SEPARATOR = "\n\n"
ELLIPSIS = "…"

ARTIFACT_SHARE = 0.65
ARTIFACT_FLOOR = 12_000
LIVE_FLOOR = 4_000

_KEYWORD_RE = re.compile(r"[a-z0-9_]{4,}")
_TEST_PATH_RE = re.compile(r"test|spec|fixture|mock|story", re.IGNORECASE)
_DOC_PATH_RE = re.compile(r"readme|docs|changelog", re.IGNORECASE)

LiveContextBuilder = Callable[[str], Awaitable[str | None]]


@dataclass
class ArtifactContext:
    text: str
    approx_tokens: int = 0
    chunk_count: int = 0
    file_count: int = 0
    truncated: bool = False
    total_candidates: int = 0


@dataclass
class ContextBundle:
    """Context handed to every agent on the propose step."""

    artifact_text: str = ""
    live_text: str = ""
    budget: int = 0
    approx_tokens: int = 0
    chunk_count: int = 0
    file_count: int = 0
    artifact_truncated: bool = False
    artifact_trimmed: bool = False
    live_trimmed: bool = False

    @property
    def text(self) -> str:
        return SNIPPET_SEPARATOR.join(part for part in (self.artifact_text, self.live_text) if part)

    def to_meta(self) -> dict[str, Any]:
        return {
            "approx_tokens": self.approx_tokens,
            "chunk_count": self.chunk_count,
            "file_count": self.file_count,
            "artifact_chars": len(self.artifact_text),
            "live_chars": len(self.live_text),
            "artifact_truncated": self.artifact_truncated,
            "artifact_trimmed": self.artifact_trimmed,
            "live_trimmed": self.live_trimmed,
        }


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def is_priority_path(file_path: str) -> bool:
    return file_path.lower().endswith(PRIORITY_SUFFIXES)


def extract_keywords(question: str | None) -> list[str]:
    """Unique 4+ character tokens of the question, in order of appearance."""
    if not question:
        return []
    seen: dict[str, None] = {}
    for match in _KEYWORD_RE.findall(question.lower()):
        seen.setdefault(match, None)
    return list(seen)[:32]


def _top_languages(manifest: dict[str, Any], count: int) -> list[tuple[str, int]]:
    languages = manifest.get("languages")
    if not isinstance(languages, dict):
        return []
    entries = [(str(lang), n) for lang, n in languages.items() if isinstance(n, (int, float))]
    return sorted(entries, key=lambda item: item[1], reverse=True)[:count]


def build_manifest_lines(artifact: CodeArtifact, manifest: dict[str, Any]) -> list[str]:
    lines = [f"Uploaded bundle: {artifact.original_filename}"]
    if isinstance(manifest.get("totalFiles"), int):
        processed = manifest.get("processedFiles", manifest["totalFiles"])
        skipped = manifest.get("skippedFiles", 0)
        lines.append(f"Files processed: {processed} (skipped {skipped})")

    top_langs = [f"{lang}({n})" for lang, n in _top_languages(manifest, 5)]
    if top_langs:
        lines.append(f"Languages: {', '.join(top_langs)}")

    top_files = manifest.get("topFiles")
    if isinstance(top_files, list):
        described = "; ".join(
            f"{entry.get('path')} ({entry.get('language') or 'text'})"
            for entry in top_files[:5]
            if isinstance(entry, dict)
        )
        if described:
            lines.append(f"Key files: {described}")
    return lines


@dataclass
class _Candidate:
    chunk: CodeChunk
    score: int
    keyword_hit: bool
    is_priority: bool
    is_top_file: bool


def score_chunks(
    chunks: Sequence[CodeChunk], manifest: dict[str, Any], question: str | None = None
) -> list[_Candidate]:
    """Score every chunk and return them best-first (ties: lower chunk index first)."""
    top_files_raw = manifest.get("topFiles")
    top_files = {
        entry["path"].lower()
        for entry in (top_files_raw if isinstance(top_files_raw, list) else [])
        if isinstance(entry, dict) and isinstance(entry.get("path"), str)
    }
    top_languages = {lang for lang, _ in _top_languages(manifest, 4)}
    keywords = extract_keywords(question)

    candidates: list[_Candidate] = []
    for chunk in chunks:
        lower_path = chunk.file_path.lower()
        keyword_hit = any(kw in lower_path for kw in keywords)
        is_priority = is_priority_path(chunk.file_path)
        is_top_file = lower_path in top_files

        score = 1
        if is_priority:
            score += 4
        if is_top_file:
            score += 3
        if chunk.language and chunk.language in top_languages:
            score += 2
        if keyword_hit:
            score += 3
        if chunk.chunk_index == 0:
            score += 2
        elif chunk.chunk_index <= 2:
            score += 1
        if _TEST_PATH_RE.search(lower_path):
            score -= 2
        if _DOC_PATH_RE.search(lower_path):
            score -= 1
        candidates.append(_Candidate(chunk, score, keyword_hit, is_priority, is_top_file))

    # Stable sort keeps fetch order for full ties.
    candidates.sort(key=lambda c: (-c.score, c.chunk.chunk_index))
    return candidates


def per_file_limit(candidate: _Candidate) -> int:
    base = 6 if candidate.is_priority else 3
    boost = (3 if candidate.keyword_hit else 0) + (2 if candidate.is_top_file else 0)
    return min(12, base + boost)


def select_chunks(
    chunks: Sequence[CodeChunk],
    manifest: dict[str, Any],
    *,
    max_chars: int,
    question: str | None = None,
    initial_chars: int = 0,
    max_chunks: int | None = None,
) -> tuple[list[str], ArtifactContext]:
    """Greedy selection of ranked chunks under a character budget.

    ``initial_chars`` accounts for text already committed (the manifest
    summary). Each accepted snippet also pays for its separator.
    """
    ceiling = max_chunks or settings.context_max_chunks
    candidates = score_chunks(chunks, manifest, question)
    snippets: list[str] = []
    per_file_counts: dict[str, int] = {}
    selected_files: set[str] = set()
    total_chars = initial_chars
    approx_tokens = 0
    truncated = False

    for candidate in candidates:
        if len(snippets) >= ceiling:
            truncated = True
            break
        lower_path = candidate.chunk.file_path.lower()
        current = per_file_counts.get(lower_path, 0)
        if current >= per_file_limit(candidate):
            truncated = True
            continue
        body = candidate.chunk.content.strip()
        if not body:
            continue
        snippet = f"File: {candidate.chunk.file_path} [chunk {candidate.chunk.chunk_index + 1}]\n{body}"
        cost = len(snippet) + len(SNIPPET_SEPARATOR)
        if total_chars + cost > max_chars:
            truncated = True
            break
        snippets.append(snippet)
        per_file_counts[lower_path] = current + 1
        selected_files.add(lower_path)
        total_chars += cost
        approx_tokens += candidate.chunk.token_estimate or estimate_tokens(candidate.chunk.content)

    return snippets, ArtifactContext(
        text="",
        approx_tokens=approx_tokens,
        chunk_count=len(snippets),
        file_count=len(selected_files),
        truncated=truncated,
        total_candidates=len(candidates),
    )


def trim_text(text: str, limit: int) -> tuple[str, bool]:
    """Cut ``text`` to ``limit`` characters, the last one being an ellipsis."""
    if len(text) <= limit:
        return text, False
    if limit <= 0:
        return "", True
    return text[: limit - 1] + ELLIPSIS, True


def rebalance(artifact_text: str, live_text: str, budget: int) -> tuple[str, str, bool, bool]:
    """Fit both context sides into ``budget`` characters (joined length).

    Returns the possibly trimmed texts and whether each side was cut.
    """
    if artifact_text and live_text:
        available = budget - len(SNIPPET_SEPARATOR)
        if len(artifact_text) + len(live_text) <= available:
            return artifact_text, live_text, False, False

        artifact_alloc = max(ARTIFACT_FLOOR, int(available * ARTIFACT_SHARE))
        live_alloc = max(LIVE_FLOOR, available - artifact_alloc)
        if artifact_alloc + live_alloc > available:
            # Floors cannot both hold on a small budget; fall back to the plain split.
            artifact_alloc = int(available * ARTIFACT_SHARE)
            live_alloc = available - artifact_alloc
        # A side that fits its share hands the slack to the other side.
        if len(artifact_text) <= artifact_alloc:
            live_alloc = available - len(artifact_text)
        elif len(live_text) <= live_alloc:
            artifact_alloc = available - len(live_text)

        artifact_out, artifact_cut = trim_text(artifact_text, artifact_alloc)
        live_out, live_cut = trim_text(live_text, live_alloc)
        return artifact_out, live_out, artifact_cut, live_cut

    artifact_out, artifact_cut = trim_text(artifact_text, budget)
    live_out, live_cut = trim_text(live_text, budget)
    return artifact_out, live_out, artifact_cut, live_cut


class ContextAssembler:
    """Builds the shared propose-step context from an artifact and a live URL."""

    def __init__(
        self,
        chunk_store: ChunkStore | None,
        *,
        live_context_builder: LiveContextBuilder | None = None,
        budget: int | None = None,
    ) -> None:
        self._chunk_store = chunk_store
        self._live_context_builder = live_context_builder or build_live_url_context
        self.budget = budget or settings.context_char_budget

    async def _load_chunks(self, artifact_id: str) -> list[CodeChunk]:
        if self._chunk_store is None:
            return []
        priority = await self._chunk_store.list_artifact_chunks(
            artifact_id, settings.context_priority_chunk_limit, PRIORITY_LANGUAGES
        )
        general = await self._chunk_store.list_artifact_chunks(
            artifact_id, settings.context_general_chunk_limit
        )
        combined: list[CodeChunk] = []
        seen: set[tuple[str, int]] = set()
        for chunk in [*priority, *general]:
            key = (chunk.file_path, chunk.chunk_index)
            if key in seen:
                continue
            seen.add(key)
            combined.append(chunk)
        return combined

    async def build_artifact_context(
        self, artifact_id: str, *, question: str | None = None, max_chars: int | None = None
    ) -> ArtifactContext | None:
        if self._chunk_store is None:
            return None
        artifact = await self._chunk_store.get_artifact_by_id(artifact_id)
        if artifact is None or not artifact.manifest:
            return None
        manifest = artifact.manifest
        manifest_text = "\n".join(build_manifest_lines(artifact, manifest))
        limit = max_chars or self.budget

        chunks = await self._load_chunks(artifact_id)
        if not chunks:
            return ArtifactContext(text=manifest_text)

        snippets, result = select_chunks(
            chunks,
            manifest,
            max_chars=limit,
            question=question,
            initial_chars=len(manifest_text),
        )
        result.text = SNIPPET_SEPARATOR.join(
            part for part in (manifest_text, SNIPPET_SEPARATOR.join(snippets)) if part
        )
        return result

    async def assemble(
        self,
        *,
        artifact_id: str | None = None,
        live_url: str | None = None,
        question: str | None = None,
    ) -> ContextBundle:
        artifact = None
        if artifact_id:
            artifact = await self.build_artifact_context(artifact_id, question=question)
        live_text = ""
        if live_url:
            live_text = await self._live_context_builder(live_url) or ""

        artifact_text = artifact.text if artifact else ""
        artifact_out, live_out, artifact_cut, live_cut = rebalance(
            artifact_text, live_text, self.budget
        )
        bundle = ContextBundle(
            artifact_text=artifact_out,
            live_text=live_out,
            budget=self.budget,
            approx_tokens=artifact.approx_tokens if artifact else 0,
            chunk_count=artifact.chunk_count if artifact else 0,
            file_count=artifact.file_count if artifact else 0,
            artifact_truncated=artifact.truncated if artifact else False,
            artifact_trimmed=artifact_cut,
            live_trimmed=live_cut,
        )
        logger.debug(
            "Assembled context: %s artifact chars, %s live chars (budget %s)",
            len(artifact_out),
            len(live_out),
            self.budget,
        )
        return bundle
