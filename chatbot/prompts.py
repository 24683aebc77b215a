"""
Prompt templates for the coffee recommendation chatbot.

Two system prompts drive the pipeline:
- Decision prompt: classifies the user's request into a retrieval plan
- Ranking prompt: orders a candidate set and justifies each pick

Every builder here is a pure function (inputs -> string) so prompts can be
tested without touching the reasoning service. Optional blocks (reference
product, graph context) are dropped entirely when absent.
"""

from typing import Optional, Sequence

from langchain_core.prompts import PromptTemplate

from chatbot.models import (
    CHARACTER_AXES,
    FLAVOR_CATEGORIES,
    UNKNOWN,
    CandidateProduct,
    GraphContext,
)

MAX_PROMPT_ORIGINS = 10

RANKING_USER_MESSAGE = "Rank these products and explain why each matches my request."


# ==============================================================================
# DECISION (INTENT CLASSIFICATION)
# ==============================================================================

QUERY_TYPE_GUIDE = """- SEARCH_BY_NAME: the user names a specific product (filters.productName)
- SEARCH_BY_BRAND: the user names a roaster or brand (filters.brandName)
- SIMILAR_FLAVORS: coffees that taste like the reference product (or a named product)
- SAME_ORIGIN: same origin country (filters.origin, or the reference product's origin)
- SAME_ROAST: a given roast level (filters.roastLevel)
- SAME_PROCESS: a given processing method (filters.process)
- MORE_CATEGORY / LESS_CATEGORY: more or less of a flavor category (filters.flavorCategory)
- MORE_CHARACTER / LESS_CHARACTER: more or less of a character axis (filters.characterAxis)
- SIMILAR_PROFILE: closest overall flavor profile to the reference product
- SAME_ORIGIN_MORE_CATEGORY: same origin plus more of a flavor category
- SAME_ORIGIN_DIFFERENT_ROAST: same origin at a different roast level
- CUSTOM: any combination of origin, process and roast level filters"""

DECISION_SYSTEM_TEMPLATE = PromptTemplate.from_template(
    """You are a friendly coffee expert helping a customer find specialty coffee beans.
Decide which catalog query best answers the customer's latest message.

{reference_block}{graph_context_block}=== QUERY TYPES ===
{query_types}

=== FILTER VALUES ===
Flavor categories: {flavor_categories}
Character axes: {character_axes}
Prices are in GBP. Use filters.minPrice / filters.maxPrice for budget requests.

=== OUTPUT ===
Respond with a single JSON object and nothing else:
{{"queryType": "<one of the query types>",
 "filters": {{"productName": null, "brandName": null, "flavorCategory": null, "characterAxis": null,
             "roastLevel": null, "origin": null, "process": null, "minPrice": null, "maxPrice": null}},
 "response": "<one or two sentences explaining what you are looking for>",
 "suggestedActions": [{{"label": "<short button text>", "intent": "<snake_case_intent>", "icon": "<optional>"}}]}}

Offer 2-4 suggested actions that explore the catalog further."""
)


def format_reference_block(reference: Optional[CandidateProduct]) -> str:
    """Reference-product block for the decision prompt, or "" when absent."""
    if reference is None:
        return ""

    lines = [
        "=== REFERENCE PRODUCT ===",
        f"Name: {reference.name}",
        f"Brand: {reference.brand or UNKNOWN}",
    ]
    if reference.origins:
        lines.append(f"Origin: {', '.join(reference.origin_countries)}")
    lines.append(f"Roast: {reference.roast_level or UNKNOWN}")
    if reference.processes:
        lines.append(f"Process: {', '.join(reference.processes)}")
    lines.append(f"Price: {_format_price(reference.price)}")
    if reference.tasting_notes:
        lines.append(f"Flavors: {_format_flavors(reference)}")
    return "\n".join(lines) + "\n\n"


def format_graph_context_block(context: Optional[GraphContext]) -> str:
    """Graph statistics block for the decision prompt, or "" when absent."""
    if context is None:
        return ""

    lines = [
        "=== CATALOG GRAPH CONTEXT ===",
        f"Products from same origin: {context.same_origin_count}",
        f"Products with same roast level: {context.same_roast_count}",
        f"Products with same process: {context.same_process_count}",
        f"Products with similar flavors: {context.similar_flavor_count}",
        f"Available origins: {', '.join(context.available_origins[:MAX_PROMPT_ORIGINS])}",
        f"Available processes: {', '.join(context.available_processes)}",
    ]
    return "\n".join(lines) + "\n\n"


def build_decision_prompt(
    reference: Optional[CandidateProduct] = None,
    graph_context: Optional[GraphContext] = None,
) -> str:
    """Build the system prompt for intent classification."""
    return DECISION_SYSTEM_TEMPLATE.format(
        reference_block=format_reference_block(reference),
        graph_context_block=format_graph_context_block(graph_context),
        query_types=QUERY_TYPE_GUIDE,
        flavor_categories=", ".join(FLAVOR_CATEGORIES),
        character_axes=", ".join(CHARACTER_AXES),
    )


# ==============================================================================
# RANKING & EXPLANATION
# ==============================================================================

RANKING_SYSTEM_TEMPLATE = PromptTemplate.from_template(
    """You are a coffee expert ranking products for a customer.

Customer request: "{user_query}"

{reference_block}=== CANDIDATE PRODUCTS ===
{candidates}
Rank the candidates from best to worst match for the request. Only use product IDs from the list above.
For each product give a one-sentence reason that refers to its actual flavors, origin, roast or process.

Respond with a single JSON object and nothing else:
{{"products": [{{"productId": <ID>, "reason": "<why it matches>"}}]}}"""
)


def format_product_details(product: CandidateProduct) -> str:
    """One-line product summary in fixed field order."""
    origins = ", ".join(product.origin_countries) if product.origins else UNKNOWN
    process = ", ".join(product.processes) if product.processes else UNKNOWN
    flavors = _format_flavors(product) if product.tasting_notes else "No flavors listed"
    return (
        f"ID: {product.id} | Name: {product.name} | Brand: {product.brand or UNKNOWN} | "
        f"Origin: {origins} | Roast: {product.roast_level or UNKNOWN} | Process: {process} | "
        f"Price: {_format_price(product.price)} | Flavors: {flavors}"
    )


def format_candidate_list(candidates: Sequence[CandidateProduct]) -> str:
    return "".join(f"{i}. {format_product_details(p)}\n" for i, p in enumerate(candidates, start=1))


def build_ranking_prompt(
    user_query: str,
    candidates: Sequence[CandidateProduct],
    reference: Optional[CandidateProduct] = None,
) -> str:
    """Build the system prompt for ranking a capped candidate list."""
    reference_block = ""
    if reference is not None:
        reference_block = f"=== REFERENCE PRODUCT ===\n{format_product_details(reference)}\n\n"

    return RANKING_SYSTEM_TEMPLATE.format(
        user_query=user_query,
        reference_block=reference_block,
        candidates=format_candidate_list(candidates),
    )


def _format_price(price: Optional[float]) -> str:
    return f"£{price:.2f}" if price is not None else UNKNOWN


def _format_flavors(product: CandidateProduct) -> str:
    return ", ".join(
        f"{note.name} ({note.category})" if note.category else note.name for note in product.tasting_notes
    )
