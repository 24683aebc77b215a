"""Graph Query Executor interface.

The catalog graph is an external collaborator. The pipeline only needs a
query-type enum, a parameter bag, and three idempotent read operations.
"""

from enum import Enum
from typing import List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from chatbot.models import CandidateProduct, GraphContext


class GraphQuery(str, Enum):
    """Traversals the executor must support."""

    BY_NAME = "by_name"                      # name_substring, case-insensitive
    BY_BRAND = "by_brand"                    # brand_name, case-insensitive substring
    BY_ORIGIN = "by_origin"                  # origin country
    BY_ROAST = "by_roast"                    # roast_level
    BY_PROCESS = "by_process"                # process
    BY_CATEGORY = "by_category"              # flavor_category membership
    FLAVOR_OVERLAP = "flavor_overlap"        # shared tasting notes with reference_id
    ATTRIBUTE_OVERLAP = "attribute_overlap"  # shared flavor attributes with reference_id
    SUBCATEGORY_OVERLAP = "subcategory_overlap"
    CATEGORY_PROFILE = "category_profile"    # profile-vector distance on category_index
    CATEGORY_FLAVOR_OVERLAP = "category_flavor_overlap"  # flavor overlap + more/less of flavor_category
    CHARACTER_FLAVOR_OVERLAP = "character_flavor_overlap"  # flavor overlap + axis filter
    CHARACTER_AXIS = "character_axis"        # axis-only vector distance
    SIMILAR_PROFILE = "similar_profile"      # cosine over the full profile vector
    SAME_ORIGIN_CATEGORY = "same_origin_category"  # same origin as reference, more of flavor_category
    SAME_ORIGIN_ROAST = "same_origin_roast"  # same origin as reference, different roast


class Direction(str, Enum):
    MORE = "more"
    LESS = "less"


class GraphQueryParams(BaseModel):
    """Parameters for one graph query. Unused fields stay None."""

    model_config = ConfigDict(frozen=True)

    reference_id: Optional[int] = None
    origin: Optional[str] = None
    process: Optional[str] = None
    roast_level: Optional[str] = None
    flavor_category: Optional[str] = None
    category_index: Optional[int] = Field(default=None, ge=0, le=8)
    character_axis_index: Optional[int] = Field(default=None, ge=0, le=3)
    name_substring: Optional[str] = None
    brand_name: Optional[str] = None
    direction: Optional[Direction] = None


@runtime_checkable
class GraphQueryExecutor(Protocol):
    """Read-only access to the catalog graph."""

    async def execute(self, query: GraphQuery, params: GraphQueryParams, limit: int) -> List[CandidateProduct]:
        """Run one traversal. Must be idempotent and side-effect-free."""
        ...

    async def get_product(self, product_id: int) -> Optional[CandidateProduct]:
        ...

    async def graph_context(self, reference: CandidateProduct) -> GraphContext:
        """Catalog statistics relative to ``reference``."""
        ...
