import pytest

from magi.context import (
    ContextAssembler,
    build_manifest_lines,
    extract_keywords,
    per_file_limit,
    rebalance,
    score_chunks,
    select_chunks,
    trim_text,
)
from magi.models import CodeArtifact, CodeChunk

from conftest import FakeChunkStore


def _chunk(path: str, index: int = 0, language: str | None = None, content: str = "body") -> CodeChunk:
    return CodeChunk(
        id=index + 1,
        artifact_id="a",
        file_path=path,
        chunk_index=index,
        language=language,
        content=content,
        token_estimate=None,
    )


MANIFEST = {
    "totalFiles": 10,
    "processedFiles": 9,
    "skippedFiles": 1,
    "languages": {"php": 40, "javascript": 12, "css": 3, "markdown": 2, "json": 1, "yaml": 1},
    "topFiles": [
        {"path": "app/Login.php", "language": "php", "bytes": 9000},
        {"path": "public/app.js", "language": "javascript", "bytes": 4000},
    ],
}


def test_extract_keywords_unique_and_long_enough() -> None:
    assert extract_keywords("Is the LOGIN form safe? login, csrf and xss") == ["login", "form", "safe", "csrf"]
    assert extract_keywords(None) == []


def test_manifest_lines() -> None:
    artifact = CodeArtifact(id="a", user_id="u", storage_path="s", original_filename="site.zip")
    lines = build_manifest_lines(artifact, MANIFEST)
    assert lines[0] == "Uploaded bundle: site.zip"
    assert lines[1] == "Files processed: 9 (skipped 1)"
    assert lines[2] == "Languages: php(40), javascript(12), css(3), markdown(2), json(1)"
    assert lines[3] == "Key files: app/Login.php (php); public/app.js (javascript)"


def test_scoring_boosts_and_penalties() -> None:
    chunks = [
        _chunk("README.md", 0, "markdown"),
        _chunk("tests/test_login.py", 0, "python"),
        _chunk("app/Login.php", 0, "php"),
        _chunk("lib/util.py", 5, "python"),
    ]
    ranked = score_chunks(chunks, MANIFEST, "review the login flow")
    scores = {c.chunk.file_path: c.score for c in ranked}
    # 1 + priority 4 + top file 3 + top language 2 + keyword 3 + first chunk 2
    assert scores["app/Login.php"] == 15
    # 1 + keyword 3 + first chunk 2 - test path 2
    assert scores["tests/test_login.py"] == 4
    # 1 + top language 2 + first chunk 2 - docs 1
    assert scores["README.md"] == 4
    assert scores["lib/util.py"] == 1
    assert ranked[0].chunk.file_path == "app/Login.php"
    assert ranked[-1].chunk.file_path == "lib/util.py"


def test_ties_break_on_chunk_index() -> None:
    ranked = score_chunks([_chunk("a.txt", 2), _chunk("b.txt", 1)], {}, None)
    # chunk 1 and 2 both get +1; lower index first
    assert [c.chunk.file_path for c in ranked] == ["b.txt", "a.txt"]


def test_per_file_limit() -> None:
    ranked = score_chunks(
        [_chunk("x.php"), _chunk("app/Login.php"), _chunk("notes.txt")], MANIFEST, "login"
    )
    limits = {c.chunk.file_path: per_file_limit(c) for c in ranked}
    assert limits["x.php"] == 6
    assert limits["notes.txt"] == 3
    assert limits["app/Login.php"] == 11


def test_select_respects_per_file_cap() -> None:
    chunks = [_chunk("lib/big.py", i) for i in range(6)]
    snippets, result = select_chunks(chunks, {}, max_chars=10_000)
    assert len(snippets) == 3
    assert result.truncated is True
    assert result.file_count == 1
    assert snippets[0].startswith("File: lib/big.py [chunk 1]\n")


def test_select_stops_at_budget() -> None:
    chunks = [_chunk(f"f{i}.txt", 0, content="y" * 100) for i in range(5)]
    snippets, result = select_chunks(chunks, {}, max_chars=300, initial_chars=50)
    assert len(snippets) == 2
    assert result.truncated is True
    assert sum(len(s) + 2 for s in snippets) + 50 <= 300


def test_select_skips_empty_chunks() -> None:
    snippets, result = select_chunks([_chunk("a.txt", 0, content="   "), _chunk("b.txt", 0)], {}, max_chars=1000)
    assert len(snippets) == 1
    assert result.chunk_count == 1


def test_select_hard_ceiling() -> None:
    chunks = [_chunk(f"f{i}.txt", 0, content="z") for i in range(10)]
    snippets, result = select_chunks(chunks, {}, max_chars=100_000, max_chunks=4)
    assert len(snippets) == 4
    assert result.truncated is True


def test_trim_text() -> None:
    assert trim_text("abcdef", 10) == ("abcdef", False)
    assert trim_text("abcdef", 4) == ("abc…", True)
    assert trim_text("abcdef", 0) == ("", True)


def test_rebalance_both_sides_over_budget() -> None:
    artifact = "a" * 30_000
    live = "l" * 10_000
    art, liv, art_cut, live_cut = rebalance(artifact, live, 26_000)
    assert len(art) + 2 + len(liv) <= 26_000
    assert art_cut and live_cut
    assert len(art) == int(25_998 * 0.65)
    assert art.endswith("…") and liv.endswith("…")


def test_rebalance_gives_slack_to_larger_side() -> None:
    artifact = "a" * 5_000
    live = "l" * 30_000
    art, liv, art_cut, live_cut = rebalance(artifact, live, 26_000)
    assert art == artifact
    assert art_cut is False
    assert live_cut is True
    assert len(art) + 2 + len(liv) == 26_000


def test_rebalance_single_side() -> None:
    art, liv, art_cut, live_cut = rebalance("a" * 30_000, "", 26_000)
    assert len(art) == 26_000
    assert art_cut is True
    assert liv == "" and live_cut is False


def test_rebalance_small_budget_floors_collide() -> None:
    art, liv, art_cut, live_cut = rebalance("a" * 20_000, "l" * 20_000, 10_000)
    assert len(art) + 2 + len(liv) <= 10_000
    assert art_cut and live_cut


def test_rebalance_within_budget_is_untouched() -> None:
    assert rebalance("abc", "def", 100) == ("abc", "def", False, False)


@pytest.mark.asyncio
async def test_assembler_combines_artifact_and_live(chunk_store: FakeChunkStore) -> None:
    artifact = chunk_store.add_artifact(
        manifest=MANIFEST,
        chunks=[
            ("app/Login.php", 0, "php", "<?php echo 'login'; ?>"),
            ("lib/util.js", 0, "javascript", "export const x = 1;"),
        ],
    )

    async def live_builder(url: str) -> str:
        return f"Live site snapshot\nURL: {url}\n\nHello"

    assembler = ContextAssembler(chunk_store, live_context_builder=live_builder, budget=26_000)
    bundle = await assembler.assemble(
        artifact_id=artifact.id, live_url="https://example.com/", question="login"
    )

    assert bundle.artifact_text.startswith("Uploaded bundle: site.zip")
    assert "File: app/Login.php [chunk 1]" in bundle.artifact_text
    assert bundle.artifact_text.index("app/Login.php") < bundle.artifact_text.index("lib/util.js")
    assert bundle.live_text.endswith("Hello")
    assert bundle.text == f"{bundle.artifact_text}\n\n{bundle.live_text}"
    assert bundle.chunk_count == 2
    assert bundle.file_count == 2
    assert not bundle.artifact_trimmed and not bundle.live_trimmed
    # priority fetch filtered by language, then a general fetch
    assert chunk_store.calls[0][2] == ("html", "php")
    assert chunk_store.calls[1][2] is None


@pytest.mark.asyncio
async def test_assembler_budget_invariant(chunk_store: FakeChunkStore) -> None:
    artifact = chunk_store.add_artifact(
        manifest=MANIFEST,
        chunks=[(f"src/file{i}.js", 0, "javascript", "q" * 900) for i in range(60)],
    )

    async def live_builder(url: str) -> str:
        return "L" * 15_000

    assembler = ContextAssembler(chunk_store, live_context_builder=live_builder, budget=26_000)
    bundle = await assembler.assemble(artifact_id=artifact.id, live_url="https://example.com/")

    assert len(bundle.text) <= 26_000
    assert bundle.live_trimmed is True
    assert bundle.artifact_truncated is True


@pytest.mark.asyncio
async def test_assembler_missing_artifact_and_no_live(chunk_store: FakeChunkStore) -> None:
    assembler = ContextAssembler(chunk_store)
    bundle = await assembler.assemble(artifact_id="nope")
    assert bundle.text == ""
    assert bundle.chunk_count == 0


@pytest.mark.asyncio
async def test_assembler_without_chunk_store_loads_nothing() -> None:
    assembler = ContextAssembler(None)
    assert await assembler._load_chunks("any") == []
