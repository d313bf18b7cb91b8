"""Heuristic query intent detection into taxonomy filters.

Defines:
- QueryIntent: Dataclass carrying inferred capability and industry slugs.
- CAPABILITY_KEYWORDS / INDUSTRY_KEYWORDS: Curated keyword -> slug tables.
- detect_intent: Pure keyword matcher producing a QueryIntent.

The detector only augments explicit filters; the retriever receives it as a parameter
so it can be swapped for a learned classifier.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Tuple


@dataclass
class QueryIntent:
    """Taxonomy slugs inferred from a query.

    Attributes:
        capabilities: Capability slugs (sorted, unique).
        industries: Industry slugs (sorted, unique).
    """
    capabilities: List[str] = field(default_factory=list)
    industries: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.capabilities and not self.industries


CAPABILITY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "brand-strategy": (
        "brand",
        "rebrand",
        "branding",
        "positioning",
        "identity",
        "brand architecture",
        "naming",
    ),
    "content-marketing": ("content", "editorial", "storytelling", "blog", "thought leadership"),
    "creative-direction": ("creative direction", "art direction", "campaign", "visual language", "design system"),
    "digital-transformation": (
        "digital transformation",
        "digital",
        "platform",
        "modernize",
        "modernise",
        " ai ",
        "automation",
    ),
    "experience-design": ("ux", "user experience", "experience design", "customer journey", "website", "mobile app"),
    "growth-marketing": ("growth", "acquisition", "conversion", "performance marketing", "funnel", "retention"),
    "social-strategy": ("social", "influencer", "tiktok", "instagram", "community"),
    "video-production": ("video", "film", "commercial", "documentary", "animation", "motion"),
}

INDUSTRY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "technology": ("tech", "saas", "software", "startup", "developer"),
    "healthcare": ("health", "healthcare", "medical", "pharma", "hospital", "wellness", "biotech"),
    "finance": ("fintech", "finance", "financial", "bank", "banking", "insurance", "payments", "crypto"),
    "retail": ("retail", "ecommerce", "e-commerce", "store", "shopping", "dtc"),
    "media-entertainment": ("media", "entertainment", "streaming", "music", "gaming", "publishing"),
    "b2b-services": ("b2b", "enterprise", "consulting", "professional services"),
    "consumer-goods": ("cpg", "consumer goods", "food", "beverage", "beauty", "fashion"),
    "non-profit": ("non-profit", "nonprofit", "charity", "ngo", "foundation"),
}


def _match(ql: str, table: Dict[str, Tuple[str, ...]]) -> List[str]:
    return sorted({slug for slug, keywords in table.items() if any(k in ql for k in keywords)})


def detect_intent(query: str) -> QueryIntent:
    """Infer capability and industry slugs from a raw query.

    Args:
        query: The raw user query string.

    Returns:
        QueryIntent: Every slug whose keyword list has a substring hit (union, not exclusive).

    Examples:
        "fintech rebrand" -> capabilities=["brand-strategy"], industries=["finance", "technology"]
    """
    ql = f" {query.strip().lower()} "
    return QueryIntent(
        capabilities=_match(ql, CAPABILITY_KEYWORDS),
        industries=_match(ql, INDUSTRY_KEYWORDS),
    )
