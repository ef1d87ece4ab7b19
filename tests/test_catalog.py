"""Tests for pain point catalog loading and validation."""

import logging

import pytest

from mcp_server_company_research.knowledge.catalog import Catalog, get_catalog, load_catalog
from mcp_server_company_research.knowledge.models import PainPoint


class TestBundledCatalog:
    """The shipped catalog is complete and valid."""

    def test_all_entries_load(self):
        catalog = get_catalog()
        assert len(catalog.pain_points) >= 16
        assert set(catalog.angles) == {"margin_analytics", "sales_growth", "promo_effectiveness", "analytics_transformation"}

    def test_every_category_is_an_angle(self):
        catalog = get_catalog()
        assert set(catalog.categories) <= set(catalog.angles)

    def test_loaded_once(self):
        assert get_catalog() is get_catalog()

    def test_search_themes(self):
        catalog = get_catalog()
        assert "pricing strategy" in catalog.search_themes("margin_analytics")
        assert catalog.search_themes(None) == ()
        assert catalog.search_themes("unknown") == ()


class TestValidation:
    """Bad entries are isolated to themselves."""

    def test_invalid_regex_skips_only_that_entry(self, caplog):
        data = {
            "pain_points": [
                {
                    "id": "broken",
                    "name": "Broken",
                    "category": "margin_analytics",
                    "trigger_signals": [{"pattern": "margin (pressure", "weight": 0.5}],
                    "hypothesis_template": "x",
                },
                {
                    "id": "fine",
                    "name": "Fine",
                    "category": "margin_analytics",
                    "trigger_signals": [{"pattern": "margin pressure", "weight": 0.5}],
                    "hypothesis_template": "x",
                },
            ]
        }

        with caplog.at_level(logging.WARNING):
            catalog = Catalog.from_dict(data)

        assert [p.id for p in catalog.pain_points] == ["fine"]
        assert "broken" in caplog.text

    def test_missing_field_skipped(self):
        catalog = Catalog.from_dict({"pain_points": [{"id": "no-template", "name": "x", "category": "c", "trigger_signals": []}]})
        assert catalog.pain_points == ()

    def test_non_positive_weight_rejected(self):
        with pytest.raises(ValueError, match="Invalid weight"):
            PainPoint.from_dict(
                {
                    "id": "zero",
                    "name": "Zero",
                    "category": "c",
                    "trigger_signals": [{"pattern": "x", "weight": 0}],
                    "hypothesis_template": "x",
                }
            )

    def test_duplicate_patterns_collapsed(self):
        pain_point = PainPoint.from_dict(
            {
                "id": "dup",
                "name": "Dup",
                "category": "c",
                "trigger_signals": [{"pattern": "price", "weight": 0.3}, {"pattern": "price", "weight": 0.9}],
                "hypothesis_template": "x",
            }
        )
        assert len(pain_point.trigger_signals) == 1
        assert pain_point.trigger_signals[0].weight == 0.3

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "angles:\n"
            "  - id: sales_growth\n"
            "    name: Sales\n"
            "pain_points:\n"
            "  - id: sales-blind\n"
            "    name: Sales Blind\n"
            "    category: sales_growth\n"
            "    hypothesis_template: '{company} lacks visibility'\n"
            "    trigger_signals:\n"
            "      - pattern: sales decline\n"
            "        weight: 0.7\n",
            encoding="utf-8",
        )

        catalog = load_catalog(path)

        assert catalog.get("sales-blind").name == "Sales Blind"
        assert catalog.angle("sales_growth").name == "Sales"


class TestHypothesisRendering:
    def test_first_dimension_used(self, small_catalog):
        pain_point = small_catalog.get("margin-erosion")
        assert pain_point.render_hypothesis("Acme", "snacks") == "Acme may be losing gross margin in snacks"

    def test_defaults_when_missing(self):
        pain_point = PainPoint.from_dict(
            {
                "id": "p",
                "name": "P",
                "category": "c",
                "trigger_signals": [{"pattern": "x", "weight": 1}],
                "hypothesis_template": "{company} {industry} {dimension}",
            }
        )
        assert pain_point.render_hypothesis("Acme", "") == "Acme similar operations"


class TestCategoryIndex:
    def test_triggers_for_category(self, small_catalog):
        triggers = small_catalog.triggers_for("margin_analytics")

        assert set(triggers) == {"margin-erosion", "price-complexity"}
        assert [t.pattern for t in triggers["margin-erosion"]] == ["margin pressure", "cost increase", "price war"]
        assert small_catalog.triggers_for("unknown") == {}

    def test_categories_in_first_seen_order(self, small_catalog):
        assert small_catalog.categories == ["margin_analytics", "sales_growth"]
