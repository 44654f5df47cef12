"""Pytest configuration and fixtures for test suite.

This is the root-level conftest.py that provides:
- Basic environment variable defaults
- A small HVAC catalog shared by unit and integration tests
- Settings and orchestrator factories with AI and caching switched off

Integration tests build their own orchestrators from these pieces.
"""
import os

import pytest

from crosswalk.config import LLMSettings, MatchingSettings
from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.services.llm.client import MockInferenceClient
from crosswalk.services.orchestrator import create_orchestrator


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up basic test environment variables before any tests run."""
    os.environ.setdefault("LOG_LEVEL", "INFO")
    os.environ.setdefault("ENVIRONMENT", "development")
    yield


@pytest.fixture
def hvac_catalog():
    """Our catalog: Lennox condensers, a heat pump, a furnace."""
    return [
        CatalogProduct(
            sku="LEN-AC-3T-16S",
            model="XC16-036-230",
            brand="Lennox",
            type="AC",
            tonnage=3,
            seer=16,
            refrigerant="R-410A",
            price=3200,
        ),
        CatalogProduct(
            sku="LEN-HP-2T-20S",
            model="XP20-024",
            brand="Lennox",
            type="Heat Pump",
            tonnage=2,
            seer=20,
            hspf=10,
            refrigerant="R-410A",
            price=4500,
        ),
        CatalogProduct(
            sku="LEN-AC-4T-14S",
            model="ML14XC1-048",
            brand="Lennox",
            type="AC",
            tonnage=4,
            seer=14,
            refrigerant="R-410A",
            price=2800,
        ),
        CatalogProduct(
            sku="LEN-FUR-80-96",
            model="EL296V",
            brand="Lennox",
            type="Furnace",
            afue=96,
            price=2100,
        ),
        CatalogProduct(
            sku="LEN-AC-5T-18S",
            model="XC20-060",
            brand="Lennox",
            type="AC",
            tonnage=5,
            seer=18,
            refrigerant="R-410A",
            price=5400,
        ),
    ]


@pytest.fixture
def pool_heater():
    """Equipment nothing in an HVAC-only catalog can match."""
    return CompetitorProduct(
        sku="RAYPAK-R406A",
        company="Raypak",
        model="R406A-EN",
        description="Natural gas pool heater, 399k BTU",
        specifications={"productType": "Pool Heater"},
    )


@pytest.fixture
def matching_settings():
    """Default thresholds, no cache."""
    return MatchingSettings(cache_enabled=False)


@pytest.fixture
def llm_off():
    """LLM settings that never build a real client."""
    return LLMSettings(api_key=None, enabled=False)


@pytest.fixture
def no_match_client():
    """Inference mock that always answers match_found: false."""
    return MockInferenceClient([{
        "match_found": False,
        "matched_sku": None,
        "confidence": 0.0,
        "reasoning": ["Pool heaters are not HVAC equipment"],
    }])


@pytest.fixture
def make_orchestrator(matching_settings, llm_off):
    """Factory for orchestrators without network access."""
    def _make(inference_client=None, research_fallback=None, matching=None):
        return create_orchestrator(
            matching or matching_settings,
            llm_off,
            inference_client=inference_client,
            research_fallback=research_fallback,
        )
    return _make
