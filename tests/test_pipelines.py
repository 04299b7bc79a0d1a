"""Tests for the query pipelines: normalizer, spelling index, suggestion composer."""

import asyncio
import dataclasses
import time
from unittest.mock import AsyncMock

import pytest

from bazar_search.errors import HistoryUnavailable, InvalidInput
from bazar_search.orchestrator.schemas import CatalogData
from bazar_search.pipelines.normalizer import canonicalize, normalize, token_spans, tokenize
from bazar_search.pipelines.spelling import SpellingIndex, edit_distance
from bazar_search.pipelines.suggestions import SuggestionComposer, spelling_variants
from bazar_search.services.history import MemoryHistoryStore
from bazar_search.services.popular import PopularQueries
from bazar_search.services.snapshots import build_snapshot


# ═══════════════ Query Normalizer ═══════════════

class TestCanonicalize:
    def test_case_and_whitespace(self):
        assert canonicalize("  FlowState   Task\tManager \n") == "flowstate task manager"

    def test_strips_zero_width(self):
        assert canonicalize("flow\u200bstate\ufeff") == "flowstate"

    def test_strips_control_characters(self):
        assert canonicalize("\x00code\x07pilot\x9f") == "codepilot"

    def test_casefold_not_lower(self):
        assert canonicalize("STRASSE") == canonicalize("Stra\u00dfe")

    def test_nfc_composition(self):
        assert canonicalize("Cafe\u0301") == "caf\u00e9"

    @pytest.mark.parametrize("raw", [
        "  FlowState  ",
        "Stra\u00dfe\u200b  \u01c4",
        "e\u0301\u0301 \ufb01le",
        "\x85mixed\u2028lines\x0b",
        "",
    ])
    def test_idempotent(self, raw):
        once = canonicalize(raw)
        assert canonicalize(once) == once


class TestNormalize:
    def test_returns_prefix_and_length(self):
        result = normalize("  Flow ")
        assert result.canonical == "flow"
        assert result.prefix_key == "flow"
        assert result.length == 4

    def test_prefix_key_is_bounded(self):
        result = normalize("a" * 50, prefix_length=32)
        assert len(result.prefix_key) == 32
        assert result.length == 50

    def test_length_counts_code_points(self):
        assert normalize("n\u0303u").length == 2

    @pytest.mark.parametrize("raw", [None, 42, ["flow"], {"q": "flow"}])
    def test_non_string_rejected(self, raw):
        with pytest.raises(InvalidInput):
            normalize(raw)


class TestTokenizer:
    def test_splits_on_punctuation(self):
        assert tokenize("node.js, react/redux") == ["node", "js", "react", "redux"]

    def test_drops_single_characters(self):
        assert tokenize("c++ & go") == ["go"]

    def test_underscore_is_a_separator(self):
        assert tokenize("snake_case") == ["snake", "case"]

    def test_spans(self):
        assert token_spans("flappi bird") == [("flappi", 0, 6), ("bird", 7, 11)]


# ═══════════════ Spelling Index ═══════════════

class TestEditDistance:
    def test_identical(self):
        assert edit_distance("flow", "flow", 1) == 0

    def test_substitution(self):
        assert edit_distance("flappi", "flappy", 1) == 1

    def test_insertion_and_deletion(self):
        assert edit_distance("fow", "flow", 1) == 1
        assert edit_distance("floow", "flow", 1) == 1

    def test_adjacent_transposition(self):
        assert edit_distance("desgin", "design", 1) == 1

    def test_above_bound(self):
        assert edit_distance("flappi", "happy", 1) is None
        assert edit_distance("abc", "abcdef", 2) is None

    def test_empty_string(self):
        assert edit_distance("", "a", 1) == 1


class TestSpellingIndex:
    def test_seed_correction(self):
        index = SpellingIndex({"products": {"flappy": 200, "happy": 150}})
        candidates = index.corrections("flappi")
        assert [c.candidate for c in candidates] == ["flappy"]
        assert candidates[0].edit_distance == 1
        assert candidates[0].frequency == 200

    def test_never_returns_token_itself(self):
        index = SpellingIndex({"products": {"flow": 10, "flaw": 3}})
        assert [c.candidate for c in index.corrections("flow")] == ["flaw"]

    def test_ordering(self):
        index = SpellingIndex({"products": {"flow": 30, "fox": 30, "bow": 100, "row": 5}})
        result = index.corrections("fow", max_return=3)
        # frequency desc, then shorter first
        assert [c.candidate for c in result] == ["bow", "fox", "flow"]

    def test_kind_scoped(self):
        index = SpellingIndex({"products": {"flappy": 200}, "jobs": {"python": 40}})
        assert index.corrections("flappi", kind="jobs") == []
        assert [c.candidate for c in index.corrections("pyhton", kind="jobs")] == ["python"]

    def test_all_sums_frequencies(self):
        index = SpellingIndex({"products": {"design": 5}, "jobs": {"design": 7}})
        assert index.frequency("design", "all") == 12
        assert index.corrections("desgin")[0].frequency == 12

    def test_unknown_kind(self):
        index = SpellingIndex({"products": {"flappy": 200}})
        assert index.corrections("flappi", kind="articles") == []

    def test_from_texts_uses_tokenizer(self):
        index = SpellingIndex.from_texts(
            {"products": ["Flappy Rocket", "Flappy Bird"]},
            extra={"products": {"Happy": 150}},
        )
        assert index.frequency("flappy", "products") == 2
        assert index.frequency("happy", "products") == 150
        assert index.size("products") == 4


# ═══════════════ Suggestion Composer ═══════════════

@pytest.fixture
def spelling_snapshot():
    catalog = CatalogData(dictionary={"products": {"flappy": 200, "happy": 150}})
    return build_snapshot(catalog, version=1)


class TestSpellingVariants:
    def test_single_token_substitution(self, demo_store):
        variants = spelling_variants(demo_store.current, "flappi rocket", "products")
        assert "flappy rocket" in variants
        assert all(v.endswith("rocket") for v in variants)


class TestSuggestionComposer:
    @pytest.mark.asyncio
    async def test_spelling_suggestion(self, spelling_snapshot):
        composer = SuggestionComposer(MemoryHistoryStore())
        suggestions, truncated = await composer.compose(spelling_snapshot, normalize("flappi"), "all")
        spelled = [s for s in suggestions if s.isSpellingCorrection]
        assert spelled and spelled[0].query == "flappy"
        assert spelled[0].source == "spelling"
        assert spelled[0].kind == "all"
        assert truncated is False

    @pytest.mark.asyncio
    async def test_history_before_spelling(self, spelling_snapshot):
        history = MemoryHistoryStore()
        await history.append("u1", "flappi bird", "products", 0)
        composer = SuggestionComposer(history)

        suggestions, _ = await composer.compose(spelling_snapshot, normalize("flappi"), "all", identity="u1")
        assert suggestions[0].source == "history"
        assert suggestions[0].query == "flappi bird"
        assert any(s.query == "flappy" and s.isSpellingCorrection for s in suggestions[1:])

    @pytest.mark.asyncio
    async def test_history_filtered_by_prefix(self, demo_store):
        history = MemoryHistoryStore()
        await history.append("u1", "codepilot", "products", 1)
        await history.append("u1", "flow", "products", 3)
        composer = SuggestionComposer(history)

        suggestions, _ = await composer.compose(demo_store.current, normalize("flo"), "all", identity="u1")
        history_queries = [s.query for s in suggestions if s.source == "history"]
        assert history_queries == ["flow"]

    @pytest.mark.asyncio
    async def test_completions_per_kind(self, demo_store):
        composer = SuggestionComposer(MemoryHistoryStore())
        suggestions, _ = await composer.compose(demo_store.current, normalize("flow"), "all")
        completions = {(s.query, s.kind) for s in suggestions if s.source == "completion"}
        assert ("flowstate task manager", "products") in completions
        assert ("flowfan", "users") in completions

    @pytest.mark.asyncio
    async def test_single_kind_scope(self, demo_store):
        composer = SuggestionComposer(MemoryHistoryStore())
        suggestions, _ = await composer.compose(demo_store.current, normalize("flow"), "products")
        assert {s.kind for s in suggestions} == {"products"}

    @pytest.mark.asyncio
    async def test_dedup_keeps_earliest(self, demo_store):
        history = MemoryHistoryStore()
        await history.append("u1", "flowstate task manager", "products", 1)
        composer = SuggestionComposer(history)

        suggestions, _ = await composer.compose(demo_store.current, normalize("flow"), "all", identity="u1")
        keys = [(s.query, s.kind) for s in suggestions]
        assert len(keys) == len(set(keys))
        match = [s for s in suggestions if s.query == "flowstate task manager" and s.kind == "products"]
        assert len(match) == 1
        assert match[0].source == "history"

    @pytest.mark.asyncio
    async def test_capped_at_ten(self, demo_store):
        history = MemoryHistoryStore()
        for i in range(15):
            await history.append("u1", f"flow {i}", "all", i)
        composer = SuggestionComposer(history)

        suggestions, _ = await composer.compose(demo_store.current, normalize("flow"), "all", identity="u1")
        assert len(suggestions) == 10

    @pytest.mark.asyncio
    async def test_spelling_failure_is_skipped(self, demo_store):
        class BrokenSpelling:
            def corrections(self, *args, **kwargs):
                raise RuntimeError("dictionary offline")

        snapshot = dataclasses.replace(demo_store.current, spelling=BrokenSpelling())
        composer = SuggestionComposer(MemoryHistoryStore())

        suggestions, _ = await composer.compose(snapshot, normalize("flow"), "all")
        assert suggestions
        assert not any(s.isSpellingCorrection for s in suggestions)

    @pytest.mark.asyncio
    async def test_history_failure_is_skipped(self, demo_store):
        history = MemoryHistoryStore()
        history.recent = AsyncMock(side_effect=HistoryUnavailable())
        composer = SuggestionComposer(history)

        suggestions, _ = await composer.compose(demo_store.current, normalize("flow"), "all", identity="u1")
        assert suggestions
        assert not any(s.source == "history" for s in suggestions)

    @pytest.mark.asyncio
    async def test_slow_source_truncates(self, demo_store):
        async def slow_recent(*args, **kwargs):
            await asyncio.sleep(1)
            return []

        history = MemoryHistoryStore()
        history.recent = slow_recent
        composer = SuggestionComposer(history)

        suggestions, truncated = await composer.compose(
            demo_store.current, normalize("flow"), "all", identity="u1", deadline_ms=50,
        )
        assert truncated is True
        assert any(s.source == "completion" for s in suggestions)

    @pytest.mark.asyncio
    async def test_anonymous_skips_history(self, demo_store):
        history = MemoryHistoryStore()
        history.recent = AsyncMock(return_value=[])
        composer = SuggestionComposer(history)

        await composer.compose(demo_store.current, normalize("flow"), "all")
        history.recent.assert_not_called()

    @pytest.mark.asyncio
    async def test_blocking_spelling_truncates(self, demo_store):
        class BusySpelling:
            def corrections(self, *args, **kwargs):
                time.sleep(0.5)
                return []

        snapshot = dataclasses.replace(demo_store.current, spelling=BusySpelling())
        composer = SuggestionComposer(MemoryHistoryStore())

        start = time.monotonic()
        suggestions, truncated = await composer.compose(snapshot, normalize("flow"), "all", deadline_ms=50)
        assert time.monotonic() - start < 0.4
        assert truncated is True
        assert any(s.source == "completion" for s in suggestions)


class TestPopularCompletions:
    @pytest.fixture
    def popular(self):
        popular = PopularQueries()
        for _ in range(3):
            popular.record("flow timer", "products")
        popular.record("flow", "jobs")
        return popular

    @pytest.mark.asyncio
    async def test_popular_before_entity_completions(self, demo_store, popular):
        composer = SuggestionComposer(MemoryHistoryStore(), popular)
        suggestions, _ = await composer.compose(demo_store.current, normalize("flow"), "all")

        assert [(s.query, s.kind, s.source) for s in suggestions[:2]] == [
            ("flow timer", "products", "completion"),
            ("flow", "jobs", "completion"),
        ]
        assert ("flowstate task manager", "products") in [(s.query, s.kind) for s in suggestions]

    @pytest.mark.asyncio
    async def test_history_still_first(self, demo_store, popular):
        history = MemoryHistoryStore()
        await history.append("u1", "flow", "all", 2)
        composer = SuggestionComposer(history, popular)

        suggestions, _ = await composer.compose(demo_store.current, normalize("flow"), "all", identity="u1")
        assert suggestions[0].source == "history"
        assert suggestions[1].query == "flow timer"

    @pytest.mark.asyncio
    async def test_scoped_to_kind(self, demo_store, popular):
        composer = SuggestionComposer(MemoryHistoryStore(), popular)
        suggestions, _ = await composer.compose(demo_store.current, normalize("flow"), "jobs")
        popular_queries = [s.query for s in suggestions if s.query in ("flow", "flow timer")]
        assert popular_queries == ["flow"]
