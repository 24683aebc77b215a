"""
End-to-end tests for ChatbotOrchestrator.

The graph executor is the in-memory catalog, the reasoning service is a
scripted AsyncMock, and Redis is fakeredis.
"""

import pytest

from chatbot.errors import BudgetExceededError, ClassificationError, ReasoningTransportError
from chatbot.models import ChatbotRequest
from chatbot.orchestrator import (
    ALL_SHOWN_MESSAGE,
    APOLOGY_MESSAGE,
    NO_MATCH_MESSAGE,
    ChatbotOrchestrator,
    get_orchestrator,
)
from libs.caching.semantic_cache import SemanticCache
from libs.common.settings import Settings
from libs.cost.governor import CostGovernor


@pytest.fixture
def governor(redis_client):
    return CostGovernor(redis_client, daily_limit=1.0, cost_per_query=0.25)


@pytest.fixture
async def semantic_cache(fake_embedder):
    cache = SemanticCache("redis://localhost:6379/9", embedding_client=fake_embedder, similarity_threshold=0.92)
    await cache.connect(use_fake=True)
    await cache.clear_cache()

    yield cache

    await cache.clear_cache()
    await cache.disconnect()


@pytest.fixture
def build(catalog, reasoning_client, governor):
    def _build(cache=None, **overrides):
        return ChatbotOrchestrator(
            settings=Settings(**overrides),
            executor=catalog,
            reasoning_client=reasoning_client,
            cache=cache,
            governor=governor,
        )

    return _build


def _ids(result):
    return [p.id for p in result.response.products]


class TestRecommendations:
    @pytest.mark.asyncio
    async def test_more_acidity_than_a_dark_brazilian(self, build, reasoning_client, decision, ranking, governor):
        reasoning_client.complete.side_effect = [
            decision("MORE_CHARACTER", response="Brighter picks.", character_axis="acidity"),
            ranking((3, "Blackcurrant brightness"), (2, "Lemony lift")),
        ]
        orchestrator = build()

        result = await orchestrator.run_query(
            ChatbotRequest(query="Something with more acidity than this", reference_product_id=1)
        )

        assert result.cache_hit is False
        assert result.response.outcome == "recommendations"
        assert _ids(result) == [3, 2]
        assert [p.rank for p in result.response.products] == [1, 2]
        assert result.response.products[0].reason == "Blackcurrant brightness"
        assert result.response.explanation == "Brighter picks."
        assert result.response.suggested_actions[0].intent == "more_fruity"
        assert await governor.get_today_cost() == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_reference_passed_to_classifier_prompt(self, build, reasoning_client, decision, ranking):
        reasoning_client.complete.side_effect = [
            decision("SAME_ORIGIN"),
            ranking((6, "Same farm region")),
        ]

        result = await build().run_query(ChatbotRequest(query="more from here", reference_product_id=1))

        system_prompt = reasoning_client.complete.await_args_list[0].args[0]
        assert "Cerrado Dark" in system_prompt
        assert _ids(result) == [6]

    @pytest.mark.asyncio
    async def test_missing_reference_is_ignored(self, build, reasoning_client, decision, ranking):
        reasoning_client.complete.side_effect = [
            decision("SAME_ORIGIN", origin="Kenya"),
            ranking((3, "Kenyan")),
        ]

        result = await build().run_query(ChatbotRequest(query="kenyan coffee", reference_product_id=404))

        assert _ids(result) == [3]


class TestEmptyOutcomes:
    @pytest.mark.asyncio
    async def test_no_match_skips_ranking(self, build, reasoning_client, decision):
        reasoning_client.complete.side_effect = [decision("SAME_ORIGIN", origin="Peru")]

        result = await build().run_query(ChatbotRequest(query="peruvian coffee"))

        assert result.response.outcome == "no_match"
        assert result.response.products == []
        assert result.response.explanation == NO_MATCH_MESSAGE
        assert reasoning_client.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_all_shown(self, build, reasoning_client, decision):
        reasoning_client.complete.side_effect = [decision("SAME_ORIGIN", origin="Brazil")]

        result = await build().run_query(ChatbotRequest(query="brazilian coffee", shown_product_ids=[1, 6]))

        assert result.response.outcome == "all_shown"
        assert result.response.explanation == ALL_SHOWN_MESSAGE
        assert reasoning_client.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_query_type_is_no_match(self, build, reasoning_client, decision):
        reasoning_client.complete.side_effect = [decision("TELEPORT")]

        result = await build().run_query(ChatbotRequest(query="surprise me"))

        assert result.response.outcome == "no_match"


class TestRankingFailure:
    @pytest.mark.asyncio
    async def test_degrade_returns_candidates_unranked(self, build, reasoning_client, decision, ranking):
        reasoning_client.complete.side_effect = [
            decision("SAME_PROCESS", response="Washed coffees.", process="Washed"),
            ranking((99, "not a candidate")),
        ]

        result = await build(ranking_failure_policy="degrade").run_query(ChatbotRequest(query="washed coffee"))

        assert result.response.outcome == "unranked"
        assert _ids(result) == [2, 3, 4]
        assert all(p.reason is None for p in result.response.products)
        assert result.response.explanation == "Washed coffees."

    @pytest.mark.asyncio
    async def test_apologize_policy(self, build, reasoning_client, decision):
        reasoning_client.complete.side_effect = [
            decision("SAME_PROCESS", process="Washed"),
            ReasoningTransportError("ranking call failed"),
        ]

        result = await build(ranking_failure_policy="apologize").run_query(ChatbotRequest(query="washed coffee"))

        assert result.response.outcome == "ranking_failed"
        assert result.response.products == []
        assert result.response.explanation == APOLOGY_MESSAGE
        assert result.response.suggested_actions == []


class TestClassificationFailure:
    @pytest.mark.asyncio
    async def test_unparseable_reply_still_costs(self, build, reasoning_client, governor):
        reasoning_client.complete.side_effect = ["this is not json"]

        with pytest.raises(ClassificationError) as exc_info:
            await build().run_query(ChatbotRequest(query="fruity coffee"))

        assert exc_info.value.reached_service is True
        assert await governor.get_today_cost() == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_unreachable_service_costs_nothing(self, build, reasoning_client, governor):
        reasoning_client.complete.side_effect = ReasoningTransportError("connection refused")

        with pytest.raises(ClassificationError) as exc_info:
            await build().run_query(ChatbotRequest(query="fruity coffee"))

        assert exc_info.value.reached_service is False
        assert await governor.get_today_cost() == 0.0


class TestBudget:
    @pytest.mark.asyncio
    async def test_over_budget_rejects_before_reasoning(self, build, reasoning_client, governor):
        for _ in range(4):
            await governor.track_query()

        with pytest.raises(BudgetExceededError) as exc_info:
            await build().run_query(ChatbotRequest(query="fruity coffee"))

        assert exc_info.value.status_code == 503
        reasoning_client.complete.assert_not_awaited()
        assert await governor.get_today_cost() == pytest.approx(1.0)


class TestSemanticCache:
    @pytest.mark.asyncio
    async def test_repeat_query_served_from_cache(
        self, build, reasoning_client, decision, ranking, semantic_cache, governor
    ):
        reasoning_client.complete.side_effect = [
            decision("SAME_ORIGIN", origin="Kenya"),
            ranking((3, "Kenyan")),
        ]
        orchestrator = build(cache=semantic_cache)
        request = ChatbotRequest(query="coffee from kenya")

        first = await orchestrator.run_query(request)
        second = await orchestrator.run_query(request)

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.cache_similarity == pytest.approx(1.0)
        assert second.response.to_wire() == first.response.to_wire()
        assert reasoning_client.complete.await_count == 2
        assert await governor.get_today_cost() == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_cache_hit_ignores_budget(self, build, reasoning_client, decision, semantic_cache, governor):
        reasoning_client.complete.side_effect = [decision("SAME_ORIGIN", origin="Peru")]
        orchestrator = build(cache=semantic_cache)
        await orchestrator.run_query(ChatbotRequest(query="peruvian coffee"))
        for _ in range(4):
            await governor.track_query()

        result = await orchestrator.run_query(ChatbotRequest(query="peruvian coffee"))

        assert result.cache_hit is True
        assert result.response.outcome == "no_match"

    @pytest.mark.asyncio
    async def test_reference_requests_bypass_cache(
        self, build, reasoning_client, decision, ranking, semantic_cache, fake_embedder
    ):
        reasoning_client.complete.side_effect = [decision("SAME_ORIGIN"), ranking((6, "Brazil"))]

        await build(cache=semantic_cache).run_query(ChatbotRequest(query="more like this", reference_product_id=1))

        assert fake_embedder.calls == 0
        assert (await semantic_cache.get_stats()).entries == 0

    @pytest.mark.asyncio
    async def test_degraded_responses_are_not_cached(
        self, build, reasoning_client, decision, ranking, semantic_cache
    ):
        reasoning_client.complete.side_effect = [decision("SAME_PROCESS", process="Washed"), ranking()]

        result = await build(cache=semantic_cache).run_query(ChatbotRequest(query="washed coffee"))

        assert result.response.outcome == "unranked"
        assert (await semantic_cache.get_stats()).entries == 0


def test_get_orchestrator_is_singleton(monkeypatch):
    monkeypatch.setenv("BEANS_CACHE_ENABLED", "false")

    assert get_orchestrator() is get_orchestrator()


@pytest.mark.asyncio
async def test_governor_built_lazily_on_shared_redis(catalog, reasoning_client):
    orchestrator = ChatbotOrchestrator(
        settings=Settings(cost_per_query=0.5), executor=catalog, reasoning_client=reasoning_client
    )

    governor = await orchestrator.get_governor()

    assert governor is not None
    assert governor.cost_per_query == 0.5
    assert await orchestrator.get_governor() is governor
