"""Pytest configuration and fixtures for company research tests."""

import pytest

from mcp_server_company_research.knowledge.catalog import Catalog
from mcp_server_company_research.research.models import DatePrecision, SourceReference


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: Tests that take longer to run")


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_source(
    url: str = "https://example.com/a",
    credibility: float = 0.5,
    publication_date: str | None = None,
    precision: DatePrecision = DatePrecision.UNKNOWN,
    snippet: str = "",
    title: str = "Example",
) -> SourceReference:
    """Build a SourceReference with sensible defaults."""
    return SourceReference(
        url=url,
        title=title,
        domain=url.split("/")[2] if "://" in url else url,
        credibility_score=credibility,
        publication_date=publication_date,
        date_precision=precision,
        snippet=snippet,
    )


@pytest.fixture
def small_catalog() -> Catalog:
    """Two-category catalog with predictable weights."""
    return Catalog.from_dict(
        {
            "angles": [
                {"id": "margin_analytics", "name": "Margin", "search_themes": ["pricing strategy", "margin pressure", "gross margin", "price war"]},
                {"id": "sales_growth", "name": "Sales", "search_themes": ["sales productivity"]},
            ],
            "pain_points": [
                {
                    "id": "margin-erosion",
                    "name": "Margin Erosion",
                    "category": "margin_analytics",
                    "trigger_signals": [
                        {"pattern": "margin pressure", "weight": 0.6},
                        {"pattern": "cost increase", "weight": 0.5},
                        {"pattern": "price war", "weight": 0.4},
                    ],
                    "hypothesis_template": "{company} may be losing {dimension} margin in {industry}",
                    "dimensions": ["gross", "net"],
                    "discovery_questions": ["Where is margin leaking?"],
                    "primary_personas": ["cfo_finance"],
                },
                {
                    "id": "price-complexity",
                    "name": "Price Complexity",
                    "category": "margin_analytics",
                    "trigger_signals": [{"pattern": "sku", "weight": 0.3}],
                    "hypothesis_template": "{company} has complex pricing",
                },
                {
                    "id": "sales-blind",
                    "name": "Sales Blind",
                    "category": "sales_growth",
                    "trigger_signals": [{"pattern": "sales decline", "weight": 0.7}],
                    "hypothesis_template": "{company} lacks sales visibility",
                },
            ],
        }
    )
