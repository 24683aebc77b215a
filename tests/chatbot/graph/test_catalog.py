"""Tests for the in-memory graph query executor."""

import json

import pytest

from chatbot.graph.catalog import CatalogLoadError, InMemoryGraphExecutor
from chatbot.graph.executor import Direction, GraphQuery, GraphQueryExecutor, GraphQueryParams


def _ids(products):
    return [p.id for p in products]


@pytest.fixture
def vector_catalog(make_product):
    """Profiles indexed fruity..other; axes are acidity, body, roast, complexity."""
    fruity = [0.9, 0.2, 0.1, 0, 0, 0, 0, 0.3, 0]
    return InMemoryGraphExecutor(
        [
            make_product(10, "Ref", countries=["Colombia"], flavor_profile=[0.5, 0.1, 0.5, 0, 0, 0.2, 0, 0.1, 0],
                         character_axes=[0.5, 0.5, 0.5, 0.5]),
            make_product(11, "Fruit Bomb", countries=["Kenya"], flavor_profile=fruity,
                         character_axes=[0.9, 0.3, 0.2, 0.7]),
            make_product(12, "Choc", countries=["Brazil"], flavor_profile=[0, 0, 0.6, 0.5, 0, 0.9, 0, 0, 0],
                         character_axes=[0.2, 0.9, 0.8, 0.3]),
            make_product(13, "Mild Fruit", countries=["Colombia"], flavor_profile=[0.7, 0, 0.4, 0, 0, 0, 0, 0, 0],
                         character_axes=[0.6, 0.4, 0.4, 0.4]),
            make_product(14, "No Vectors", countries=["Kenya"]),
        ]
    )


def test_satisfies_executor_protocol(catalog):
    assert isinstance(catalog, GraphQueryExecutor)


class TestDirectLookups:
    @pytest.mark.asyncio
    async def test_by_name_substring_case_insensitive(self, catalog):
        assert _ids(await catalog.execute(GraphQuery.BY_NAME, GraphQueryParams(name_substring="kenya"), 10)) == [3]

    @pytest.mark.asyncio
    async def test_by_brand(self, catalog):
        found = await catalog.execute(GraphQuery.BY_BRAND, GraphQueryParams(brand_name="fazenda"), 10)
        assert _ids(found) == [1, 6]

    @pytest.mark.asyncio
    async def test_by_origin(self, catalog):
        assert _ids(await catalog.execute(GraphQuery.BY_ORIGIN, GraphQueryParams(origin="Brazil"), 10)) == [1, 6]

    @pytest.mark.asyncio
    async def test_by_roast_and_process(self, catalog):
        assert _ids(await catalog.execute(GraphQuery.BY_ROAST, GraphQueryParams(roast_level="light"), 10)) == [2, 3]
        washed = await catalog.execute(GraphQuery.BY_PROCESS, GraphQueryParams(process="Washed"), 10)
        assert _ids(washed) == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_limit_applied(self, catalog):
        assert len(await catalog.execute(GraphQuery.BY_PROCESS, GraphQueryParams(process="Washed"), 2)) == 2

    @pytest.mark.asyncio
    async def test_missing_parameter_returns_nothing(self, catalog):
        assert await catalog.execute(GraphQuery.BY_ORIGIN, GraphQueryParams(), 10) == []


class TestCategoryMembership:
    @pytest.mark.asyncio
    async def test_membership_without_reference(self, catalog):
        found = await catalog.execute(GraphQuery.BY_CATEGORY, GraphQueryParams(flavor_category="fruity"), 10)
        assert _ids(found) == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_less_without_reference_is_non_membership(self, catalog):
        params = GraphQueryParams(flavor_category="fruity", direction=Direction.LESS)
        assert _ids(await catalog.execute(GraphQuery.BY_CATEGORY, params, 10)) == [1, 5, 6]

    @pytest.mark.asyncio
    async def test_more_relative_to_reference_orders_by_count(self, catalog):
        params = GraphQueryParams(reference_id=1, flavor_category="fruity")
        found = await catalog.execute(GraphQuery.BY_CATEGORY, params, 10)
        assert _ids(found)[0] == 3
        assert set(_ids(found)) == {2, 3, 4}

    @pytest.mark.asyncio
    async def test_no_sour_anywhere(self, catalog):
        assert await catalog.execute(GraphQuery.BY_CATEGORY, GraphQueryParams(flavor_category="sour"), 10) == []


class TestOverlap:
    @pytest.mark.asyncio
    async def test_flavor_overlap_excludes_reference(self, catalog):
        found = await catalog.execute(GraphQuery.FLAVOR_OVERLAP, GraphQueryParams(reference_id=1), 10)
        assert set(_ids(found)) == {4, 6}
        assert 1 not in _ids(found)

    @pytest.mark.asyncio
    async def test_attribute_overlap(self, catalog):
        found = await catalog.execute(GraphQuery.ATTRIBUTE_OVERLAP, GraphQueryParams(reference_id=2), 10)
        assert _ids(found) == [3]

    @pytest.mark.asyncio
    async def test_subcategory_overlap(self, catalog):
        found = await catalog.execute(GraphQuery.SUBCATEGORY_OVERLAP, GraphQueryParams(reference_id=5), 10)
        assert set(_ids(found)) == {1, 6}

    @pytest.mark.asyncio
    async def test_unknown_reference(self, catalog):
        assert await catalog.execute(GraphQuery.FLAVOR_OVERLAP, GraphQueryParams(reference_id=404), 10) == []

    @pytest.mark.asyncio
    async def test_same_origin_category(self, catalog):
        params = GraphQueryParams(reference_id=1, flavor_category="nutty")
        assert _ids(await catalog.execute(GraphQuery.SAME_ORIGIN_CATEGORY, params, 10)) == [6]

    @pytest.mark.asyncio
    async def test_same_origin_roast(self, catalog):
        params = GraphQueryParams(reference_id=1, roast_level="Medium")
        assert _ids(await catalog.execute(GraphQuery.SAME_ORIGIN_ROAST, params, 10)) == [6]


class TestVectorQueries:
    @pytest.mark.asyncio
    async def test_category_profile_more(self, vector_catalog):
        params = GraphQueryParams(reference_id=10, category_index=0, direction=Direction.MORE)
        assert _ids(await vector_catalog.execute(GraphQuery.CATEGORY_PROFILE, params, 10)) == [11, 13]

    @pytest.mark.asyncio
    async def test_category_profile_less(self, vector_catalog):
        params = GraphQueryParams(reference_id=10, category_index=0, direction=Direction.LESS)
        assert _ids(await vector_catalog.execute(GraphQuery.CATEGORY_PROFILE, params, 10)) == [12]

    @pytest.mark.asyncio
    async def test_character_axis_skips_products_without_vectors(self, vector_catalog):
        params = GraphQueryParams(reference_id=10, character_axis_index=0, direction=Direction.MORE)
        assert _ids(await vector_catalog.execute(GraphQuery.CHARACTER_AXIS, params, 10)) == [11, 13]

    @pytest.mark.asyncio
    async def test_similar_profile_orders_by_cosine(self, vector_catalog):
        found = await vector_catalog.execute(GraphQuery.SIMILAR_PROFILE, GraphQueryParams(reference_id=10), 10)
        assert _ids(found)[0] == 13
        assert 14 not in _ids(found)

    @pytest.mark.asyncio
    async def test_reference_without_vectors(self, catalog):
        params = GraphQueryParams(reference_id=1, character_axis_index=0)
        assert await catalog.execute(GraphQuery.CHARACTER_AXIS, params, 10) == []


class TestContextAndLoading:
    @pytest.mark.asyncio
    async def test_get_product(self, catalog):
        assert (await catalog.get_product(3)).name == "Kenya AA Nyeri"
        assert await catalog.get_product(404) is None

    @pytest.mark.asyncio
    async def test_graph_context_counts(self, catalog, catalog_products):
        context = await catalog.graph_context(catalog_products[0])

        assert context.same_origin_count == 1
        assert context.same_roast_count == 1
        assert context.same_process_count == 1
        assert context.similar_flavor_count == 2
        assert context.available_origins == ["Brazil", "Colombia", "Ethiopia", "Indonesia", "Kenya"]
        assert "Washed" in context.available_processes

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"products": [{"id": 1, "name": "A", "origins": [{"country": "Peru"}]}]}))

        executor = InMemoryGraphExecutor.from_json_file(path)

        assert len(executor) == 1

    def test_from_json_file_list_form(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps([{"id": 1, "name": "A"}, {"id": 2, "name": "B"}]))
        assert len(InMemoryGraphExecutor.from_json_file(path)) == 2

    def test_bad_catalog_file(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text("{oops")
        with pytest.raises(CatalogLoadError):
            InMemoryGraphExecutor.from_json_file(path)


class TestShortVectors:
    """Rows whose vectors are shorter than the index tables never fail a query."""

    @pytest.fixture
    def short_catalog(self, make_product):
        return InMemoryGraphExecutor(
            [
                make_product(1, "Short Ref", flavor_profile=[0.5, 0.2], character_axes=[0.1, 0.1]),
                make_product(2, "Full", flavor_profile=[0.1] * 9, character_axes=[0.9, 0.9, 0.9, 0.9]),
                make_product(3, "Full Ref", flavor_profile=[0.0] * 9, character_axes=[0.1, 0.1, 0.1, 0.1]),
                make_product(4, "Short", flavor_profile=[0.9], character_axes=[0.9]),
            ]
        )

    @pytest.mark.asyncio
    async def test_short_reference_profile(self, short_catalog):
        params = GraphQueryParams(reference_id=1, category_index=7)
        assert await short_catalog.execute(GraphQuery.CATEGORY_PROFILE, params, 10) == []

    @pytest.mark.asyncio
    async def test_short_reference_axes(self, short_catalog):
        params = GraphQueryParams(reference_id=1, character_axis_index=2)
        assert await short_catalog.execute(GraphQuery.CHARACTER_AXIS, params, 10) == []
        assert await short_catalog.execute(GraphQuery.CHARACTER_FLAVOR_OVERLAP, params, 10) == []

    @pytest.mark.asyncio
    async def test_short_candidates_are_skipped(self, short_catalog):
        profile = GraphQueryParams(reference_id=3, category_index=7)
        axis = GraphQueryParams(reference_id=3, character_axis_index=2)

        assert _ids(await short_catalog.execute(GraphQuery.CATEGORY_PROFILE, profile, 10)) == [2]
        assert _ids(await short_catalog.execute(GraphQuery.CHARACTER_AXIS, axis, 10)) == [2]
