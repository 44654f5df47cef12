"""
Prompt Templates
==================

Chat messages for AI-assisted matching (stage 4). The model must answer
with a single JSON object; the schema below is validated strictly on
the way back in.
"""
import json
from typing import List, Sequence

from crosswalk.models.products import CatalogProduct, CompetitorProduct

# =============================================================================
# Product Matching Prompt
# =============================================================================

MATCH_SYSTEM_MESSAGE = """You are an expert HVAC technician and product specialist with deep \
knowledge of all major HVAC brands, model numbers and specifications.
Your task is to decide whether a competitor product is equivalent to one of our catalog products.

IMPORTANT RULES:
1. Only match products that serve the same function with compatible capacity and efficiency
2. Account for different naming conventions between manufacturers
3. matched_sku MUST be one of the catalog SKUs listed, or null
4. Return valid JSON only - no markdown, no text outside the JSON object
5. Confidence should reflect certainty: 0.9+ = certain, 0.7-0.9 = likely, <0.7 = uncertain"""

MATCH_USER_TEMPLATE = """COMPETITOR PRODUCT TO MATCH:
SKU: {sku}
Model: {model}
Company: {company}
Description: {description}
Price: {price}
Specifications: {specifications}

OUR CATALOG PRODUCTS (potential matches, {count} shown):
{candidates_text}

INSTRUCTIONS:
1. Analyze the competitor product using model number patterns and specifications
2. Compare tonnage, efficiency ratings, refrigerant and application
3. Pick the single best equivalent, or none if nothing is truly comparable

Return JSON in this exact format:
{{
  "match_found": true or false,
  "matched_sku": "SKU from our catalog or null",
  "confidence": 0.0-1.0,
  "reasoning": ["specific reason 1", "specific reason 2"]
}}"""


# =============================================================================
# Helper functions
# =============================================================================

def _na(value) -> str:
    return "N/A" if value in (None, "") else str(value)


def format_candidates_text(candidates: Sequence[CatalogProduct]) -> str:
    """
    Format catalog products for the prompt.

    Args:
        candidates: Shortlisted catalog products

    Returns:
        Numbered block of catalog entries
    """
    if not candidates:
        return "No catalog products available."

    blocks = []
    for i, product in enumerate(candidates, 1):
        blocks.append(
            f"{i}. SKU: {product.sku}\n"
            f"   Model: {_na(product.model)}\n"
            f"   Brand: {_na(product.brand)}\n"
            f"   Type: {_na(product.product_type)}\n"
            f"   Tonnage: {_na(product.tonnage)}\n"
            f"   SEER: {_na(product.seer if product.seer is not None else product.seer2)}\n"
            f"   AFUE: {_na(product.afue)}\n"
            f"   HSPF: {_na(product.hspf)}\n"
            f"   Refrigerant: {_na(product.refrigerant)}"
        )
    return "\n\n".join(blocks)


def build_match_messages(
    competitor: CompetitorProduct,
    candidates: Sequence[CatalogProduct],
) -> List[dict]:
    """Build the system + user messages for one matching request."""
    specs = (
        competitor.specifications.model_dump(exclude_none=True)
        if competitor.specifications
        else {}
    )
    user = MATCH_USER_TEMPLATE.format(
        sku=competitor.sku or "Not specified",
        model=competitor.model or "Not specified",
        company=competitor.company or "Not specified",
        description=competitor.description or "Not specified",
        price=f"${competitor.price:.2f}" if competitor.price is not None else "Not specified",
        specifications=json.dumps(specs, indent=2, sort_keys=True),
        count=len(candidates),
        candidates_text=format_candidates_text(candidates),
    )
    return [
        {"role": "system", "content": MATCH_SYSTEM_MESSAGE},
        {"role": "user", "content": user},
    ]
