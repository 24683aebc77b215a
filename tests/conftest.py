"""
Pytest configuration and fixtures for the Beans chatbot tests.

Provides shared fixtures for:
- Mock Redis client (fakeredis)
- A deterministic fake embedding client
- A small product catalog with known origins, roasts and tasting notes
- A scripted reasoning client (AsyncMock)
"""

import json
import zlib
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

EMBEDDING_DIM = 64


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Force the test environment and reset process-wide singletons."""
    monkeypatch.setenv("BEANS_APP_ENV", "test")

    from libs.common.settings import get_settings
    import libs.caching.redis_client as redis_client_module
    import chatbot.middleware.rate_limiter as rate_limiter_module
    import chatbot.orchestrator as orchestrator_module

    get_settings.cache_clear()
    monkeypatch.setattr(redis_client_module, "_redis_client", None)
    monkeypatch.setattr(redis_client_module, "_connection_failed", False)
    monkeypatch.setattr(rate_limiter_module, "_query_rate_limits", None)
    monkeypatch.setattr(orchestrator_module, "_orchestrator", None)

    yield

    get_settings.cache_clear()


@pytest.fixture
async def redis_client():
    """
    Provide fakeredis client for testing.

    This avoids requiring actual Redis server during tests.
    """
    from fakeredis import aioredis as fakeredis

    client = fakeredis.FakeRedis(decode_responses=True)
    await client.flushdb()

    yield client

    await client.flushdb()
    await client.aclose()


class FakeEmbedder:
    """Bag-of-words hashing embedder: identical text gives identical vectors."""

    def __init__(self):
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        vector = [0.0] * EMBEDDING_DIM
        for word in text.lower().split():
            vector[zlib.crc32(word.encode("utf-8")) % EMBEDDING_DIM] += 1.0
        return vector


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


def _product(
    product_id: int,
    name: str,
    brand: Optional[str] = "Test Roasters",
    countries: Optional[List[str]] = None,
    roast: Optional[str] = None,
    processes: Optional[List[str]] = None,
    price: Optional[float] = None,
    notes: Optional[List[Dict[str, Any]]] = None,
    flavor_profile: Optional[List[float]] = None,
    character_axes: Optional[List[float]] = None,
):
    from chatbot.models import CandidateProduct

    return CandidateProduct(
        id=product_id,
        name=name,
        brand=brand,
        origins=[{"country": c} for c in (countries or [])],
        roast_level=roast,
        processes=processes or [],
        price=price,
        tasting_notes=notes or [],
        flavor_profile=flavor_profile,
        character_axes=character_axes,
    )


@pytest.fixture
def make_product():
    """Factory for CandidateProduct with terse arguments."""
    return _product


def _note(name: str, category: str, subcategory: Optional[str] = None, attribute: Optional[str] = None):
    return {"name": name, "category": category, "subcategory": subcategory, "attribute": attribute}


@pytest.fixture
def catalog_products():
    """
    Six products, none with profile vectors and none with sour notes.

    1 and 6 share "chocolate"; 2 and 3 are the Ethiopian and Kenyan coffees.
    """
    return [
        _product(
            1,
            "Cerrado Dark",
            brand="Fazenda Co",
            countries=["Brazil"],
            roast="Dark",
            processes=["Natural"],
            price=9.5,
            notes=[_note("chocolate", "roasted", "cocoa"), _note("caramel", "sweet", "brown sugar")],
        ),
        _product(
            2,
            "Yirgacheffe Kochere",
            brand="Origin Lab",
            countries=["Ethiopia"],
            roast="Light",
            processes=["Washed"],
            price=12.0,
            notes=[_note("jasmine", "floral", "floral", "delicate"), _note("lemon", "fruity", "citrus fruit", "bright")],
        ),
        _product(
            3,
            "Kenya AA Nyeri",
            brand="Origin Lab",
            countries=["Kenya"],
            roast="Light",
            processes=["Washed"],
            price=14.0,
            notes=[_note("blackcurrant", "fruity", "berry", "bright"), _note("grapefruit", "fruity", "citrus fruit")],
        ),
        _product(
            4,
            "Huila Supremo",
            brand="Andes Coffee",
            countries=["Colombia"],
            roast="Medium",
            processes=["Washed"],
            price=10.0,
            notes=[_note("caramel", "sweet", "brown sugar"), _note("red apple", "fruity", "other fruit")],
        ),
        _product(
            5,
            "Sumatra Mandheling",
            brand="Island Beans",
            countries=["Indonesia"],
            roast="Dark",
            processes=["Wet-hulled"],
            price=None,
            notes=[_note("cedar", "other", "woody"), _note("dark chocolate", "roasted", "cocoa")],
        ),
        _product(
            6,
            "Santos Medium",
            brand="Fazenda Co",
            countries=["Brazil"],
            roast="Medium",
            processes=["Natural"],
            price=8.0,
            notes=[_note("chocolate", "roasted", "cocoa"), _note("hazelnut", "nutty", "nutty")],
        ),
    ]


@pytest.fixture
def catalog(catalog_products):
    from chatbot.graph.catalog import InMemoryGraphExecutor

    return InMemoryGraphExecutor(catalog_products)


def decision_json(query_type: Optional[str], response: str = "Here are some options.", **filters) -> str:
    return json.dumps(
        {
            "queryType": query_type,
            "filters": filters,
            "response": response,
            "suggestedActions": [{"label": "More Fruity", "intent": "more_fruity", "icon": "🍓"}],
        }
    )


def ranking_json(*items) -> str:
    return json.dumps({"products": [{"productId": pid, "reason": reason} for pid, reason in items]})


@pytest.fixture
def decision():
    """Build a classifier reply: decision("SAME_ORIGIN", origin="Kenya")."""
    return decision_json


@pytest.fixture
def ranking():
    """Build a ranking reply: ranking((2, "bright"), (3, "juicy"))."""
    return ranking_json


@pytest.fixture
def reasoning_client():
    """Scripted reasoning client; set ``complete.side_effect`` per test."""
    client = AsyncMock()
    client.complete = AsyncMock()
    return client
