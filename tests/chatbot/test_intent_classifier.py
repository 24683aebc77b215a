"""Tests for the intent classifier."""

import pytest

from chatbot.errors import ClassificationError, ReasoningResponseError, ReasoningTransportError
from chatbot.intent_classifier import IntentClassifier, parse_plan
from chatbot.models import ConversationTurn, GraphContext, QueryType


class TestParsePlan:
    def test_parses_object(self, decision):
        plan = parse_plan(decision("SAME_ORIGIN", origin="Kenya"))
        assert plan.query_type == QueryType.SAME_ORIGIN
        assert plan.filters.origin == "Kenya"

    def test_rejects_non_object(self):
        with pytest.raises(ValueError):
            parse_plan("[1, 2, 3]")


class TestIntentClassifier:
    @pytest.mark.asyncio
    async def test_classify_builds_prompt_with_reference(self, reasoning_client, decision, catalog_products):
        reasoning_client.complete.return_value = decision("MORE_CHARACTER", character_axis="acidity")
        history = [ConversationTurn(role="user", content="hi")]

        plan = await IntentClassifier(reasoning_client).classify(
            "more acidity",
            reference=catalog_products[0],
            graph_context=GraphContext(same_origin_count=1),
            history=history,
        )

        assert plan.query_type == QueryType.MORE_CHARACTER
        assert plan.filters.character_axis == "acidity"
        system_prompt, sent_history, user_message = reasoning_client.complete.call_args.args
        assert "Name: Cerrado Dark" in system_prompt
        assert "Products from same origin: 1" in system_prompt
        assert list(sent_history) == history
        assert user_message == "more acidity"
        assert reasoning_client.complete.call_args.kwargs["force_json_object"] is True

    @pytest.mark.asyncio
    async def test_transport_failure_did_not_reach_service(self, reasoning_client):
        reasoning_client.complete.side_effect = ReasoningTransportError("timeout")

        with pytest.raises(ClassificationError) as exc_info:
            await IntentClassifier(reasoning_client).classify("anything fruity")

        assert exc_info.value.reached_service is False
        assert reasoning_client.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_unusable_response_reached_service(self, reasoning_client):
        reasoning_client.complete.side_effect = ReasoningResponseError("not json")

        with pytest.raises(ClassificationError) as exc_info:
            await IntentClassifier(reasoning_client).classify("anything fruity")

        assert exc_info.value.reached_service is True

    @pytest.mark.asyncio
    async def test_invalid_plan_reached_service(self, reasoning_client):
        reasoning_client.complete.return_value = '{"queryType": "CUSTOM", "filters": {"maxPrice": -5}}'

        with pytest.raises(ClassificationError) as exc_info:
            await IntentClassifier(reasoning_client).classify("cheap coffee")

        assert exc_info.value.reached_service is True
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_unknown_query_type_is_not_an_error(self, reasoning_client, decision):
        reasoning_client.complete.return_value = decision("SOMETHING_NEW")

        plan = await IntentClassifier(reasoning_client).classify("surprise me")

        assert plan.query_type is None
