"""Pydantic models for the coffee recommendation chatbot.

Request/response models for the HTTP surface, the classifier's retrieval
plan, and the catalog projections that flow through the pipeline.
JSON on the wire is camelCase; Python attributes are snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = structlog.get_logger(__name__)

DEFAULT_CURRENCY = "GBP"
UNKNOWN = "Unknown"


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryType(str, Enum):
    """Closed set of retrieval strategies the classifier may choose."""

    SEARCH_BY_NAME = "SEARCH_BY_NAME"
    SEARCH_BY_BRAND = "SEARCH_BY_BRAND"
    SIMILAR_FLAVORS = "SIMILAR_FLAVORS"
    SAME_ORIGIN = "SAME_ORIGIN"
    SAME_ROAST = "SAME_ROAST"
    SAME_PROCESS = "SAME_PROCESS"
    MORE_CATEGORY = "MORE_CATEGORY"
    LESS_CATEGORY = "LESS_CATEGORY"
    MORE_CHARACTER = "MORE_CHARACTER"
    LESS_CHARACTER = "LESS_CHARACTER"
    SIMILAR_PROFILE = "SIMILAR_PROFILE"
    SAME_ORIGIN_MORE_CATEGORY = "SAME_ORIGIN_MORE_CATEGORY"
    SAME_ORIGIN_DIFFERENT_ROAST = "SAME_ORIGIN_DIFFERENT_ROAST"
    CUSTOM = "CUSTOM"


# Flavor-wheel categories in profile-vector order.
FLAVOR_CATEGORIES: List[str] = [
    "fruity",
    "floral",
    "sweet",
    "nutty",
    "spices",
    "roasted",
    "green",
    "sour",
    "other",
]

# Character axes in axis-vector order.
CHARACTER_AXES: List[str] = ["acidity", "body", "roast", "complexity"]


def category_index(category: Optional[str]) -> Optional[int]:
    if not category:
        return None
    try:
        return FLAVOR_CATEGORIES.index(category.strip().lower())
    except ValueError:
        return None


def axis_index(axis: Optional[str]) -> Optional[int]:
    if not axis:
        return None
    try:
        return CHARACTER_AXES.index(axis.strip().lower())
    except ValueError:
        return None


class QueryFilters(CamelModel):
    """Filters extracted by the classifier. Every field is optional."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    product_name: Optional[str] = Field(default=None, description="Product name for by-name search")
    brand_name: Optional[str] = Field(default=None, description="Brand name for by-brand search")
    flavor_category: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("flavorCategory", "scaCategory", "flavor_category"),
        description="Flavor-wheel category (fruity, floral, sweet, nutty, spices, roasted, green, sour, other)",
    )
    character_axis: Optional[str] = Field(default=None, description="acidity, body, roast or complexity")
    roast_level: Optional[str] = Field(default=None, description="Roast level, e.g. Light, Medium, Dark")
    origin: Optional[str] = Field(default=None, description="Origin country")
    process: Optional[str] = Field(default=None, description="Processing method, e.g. Washed, Natural")
    min_price: Optional[float] = Field(default=None, ge=0, description="Lower price bound (inclusive)")
    max_price: Optional[float] = Field(default=None, ge=0, description="Upper price bound (inclusive)")

    @field_validator(
        "product_name",
        "brand_name",
        "flavor_category",
        "character_axis",
        "roast_level",
        "origin",
        "process",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """The reasoning service sometimes sends "" for absent filters."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class SuggestedAction(CamelModel):
    """Follow-up quick action offered to the user."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    label: str = Field(description="Button label", examples=["More Fruity"])
    intent: str = Field(description="Intent identifier", examples=["more_fruity"])
    icon: Optional[str] = Field(default=None, description="Optional icon hint")


class RetrievalPlan(CamelModel):
    """Structured decision returned by the intent classifier. Read-only once parsed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    query_type: Optional[QueryType] = Field(default=None, description="Retrieval strategy; None yields no results")
    filters: QueryFilters = Field(default_factory=QueryFilters)
    response: str = Field(default="", description="Natural-language explanation for the user")
    suggested_actions: List[SuggestedAction] = Field(default_factory=list)

    @field_validator("query_type", mode="before")
    @classmethod
    def unknown_query_type_to_none(cls, v: Any) -> Any:
        if v is None or isinstance(v, QueryType):
            return v
        normalized = str(v).strip().upper()
        if normalized in QueryType.__members__:
            return QueryType[normalized]
        logger.warning("Unrecognized query type from classifier", query_type=v)
        return None

    @field_validator("filters", mode="before")
    @classmethod
    def null_filters_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("response", mode="before")
    @classmethod
    def null_response_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("suggested_actions", mode="before")
    @classmethod
    def null_actions_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class Origin(BaseModel):
    country: str
    region: Optional[str] = None

    def display(self) -> str:
        if self.region and self.region.strip():
            return f"{self.region}, {self.country}"
        return self.country


class TastingNote(BaseModel):
    name: str
    category: Optional[str] = Field(default=None, description="Flavor-wheel category")
    subcategory: Optional[str] = None
    attribute: Optional[str] = None


class CandidateProduct(BaseModel):
    """Denormalized projection of one catalog item, as returned by the graph executor."""

    id: int
    name: str
    brand: Optional[str] = None
    origins: List[Origin] = Field(default_factory=list)
    roast_level: Optional[str] = None
    processes: List[str] = Field(default_factory=list)
    price: Optional[float] = None
    currency: Optional[str] = None
    tasting_notes: List[TastingNote] = Field(default_factory=list)
    url: Optional[str] = None
    flavor_profile: Optional[List[float]] = Field(
        default=None, description="Per-category intensity, indexed like FLAVOR_CATEGORIES"
    )
    character_axes: Optional[List[float]] = Field(
        default=None, description="Per-axis value, indexed like CHARACTER_AXES"
    )

    @property
    def origin_countries(self) -> List[str]:
        return [o.country for o in self.origins]

    @property
    def flavor_names(self) -> List[str]:
        return [note.name for note in self.tasting_notes]

    def origin_display(self) -> str:
        if not self.origins:
            return UNKNOWN
        return " / ".join(dict.fromkeys(o.display() for o in self.origins))


class RankedRecommendation(CamelModel):
    """A candidate augmented with its justification; the terminal artifact."""

    id: int
    name: str
    brand: str = UNKNOWN
    origin: str = UNKNOWN
    roast_level: str = UNKNOWN
    price: Optional[float] = None
    currency: str = DEFAULT_CURRENCY
    flavors: List[str] = Field(default_factory=list)
    url: Optional[str] = None
    reason: Optional[str] = Field(default=None, description="Justification from the ranking stage")
    rank: Optional[int] = Field(default=None, description="1-based position in the ranked list")

    @classmethod
    def from_candidate(
        cls, candidate: CandidateProduct, reason: Optional[str] = None, rank: Optional[int] = None
    ) -> "RankedRecommendation":
        return cls(
            id=candidate.id,
            name=candidate.name,
            brand=candidate.brand or UNKNOWN,
            origin=candidate.origin_display(),
            roast_level=candidate.roast_level or UNKNOWN,
            price=candidate.price,
            currency=candidate.currency or DEFAULT_CURRENCY,
            flavors=candidate.flavor_names,
            url=candidate.url,
            reason=reason,
            rank=rank,
        )


class GraphContext(BaseModel):
    """Catalog statistics relative to the reference product, fed to the classifier."""

    same_origin_count: int = 0
    same_roast_count: int = 0
    same_process_count: int = 0
    similar_flavor_count: int = 0
    available_origins: List[str] = Field(default_factory=list)
    available_roast_levels: List[str] = Field(default_factory=list)
    available_processes: List[str] = Field(default_factory=list)
    flavor_categories: List[str] = Field(default_factory=lambda: list(FLAVOR_CATEGORIES))


class ConversationTurn(BaseModel):
    """One prior turn. Extra keys (e.g. a "products" payload) are dropped."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant", "system"]
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def null_content_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class ChatbotRequest(CamelModel):
    """Request model for a chatbot query. All conversation state is client-side."""

    query: str = Field(..., description="User query text", examples=["Something fruitier than this"])
    messages: List[ConversationTurn] = Field(default_factory=list, description="Prior conversation turns")
    shown_product_ids: List[int] = Field(default_factory=list, description="Products already shown to the user")
    reference_product_id: Optional[int] = Field(default=None, description="Product the user is comparing against")

    @field_validator("messages", "shown_product_ids", mode="before")
    @classmethod
    def null_list_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v


Outcome = Literal["recommendations", "no_match", "all_shown", "unranked", "ranking_failed"]


class ChatbotResponse(CamelModel):
    """Response model for the chatbot query endpoint."""

    products: List[RankedRecommendation] = Field(default_factory=list)
    explanation: str = Field(default="", description="Natural-language explanation")
    suggested_actions: List[SuggestedAction] = Field(default_factory=list)
    outcome: Outcome = Field(default="recommendations", description="How the response was produced")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ErrorResponse(BaseModel):
    """Structured failure body, carried as the ``detail`` of an HTTPException."""

    error_code: str
    message: str
    retry_after_seconds: Optional[int] = None
    details: Optional[Dict[str, Any]] = None


class ErrorEnvelope(BaseModel):
    """Wire shape of every error response."""

    detail: ErrorResponse


class HealthResponse(BaseModel):
    """Response model for health check endpoints.

    Attributes:
        status: Health status (healthy/ready/not_ready)
        service: Service name
        version: Service version
        timestamp: Unix timestamp
        details: Optional additional details
    """

    status: Literal["healthy", "unhealthy", "ready", "not_ready"] = Field(description="Health status")
    service: str = Field(description="Service name", examples=["chatbot"])
    version: str
    timestamp: float
    details: Optional[Dict[str, Any]] = None
