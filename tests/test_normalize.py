"""Tests for parsing and normalizing generative model output."""

import pytest

from mcp_server_company_research.exceptions import MalformedGenerativeOutput
from mcp_server_company_research.research.models import DatePrecision
from mcp_server_company_research.research.normalize import (
    NOT_AVAILABLE,
    NOT_SPECIFIED,
    PERSONA_KEYS,
    normalize_research_output,
    parse_generative_json,
)


class TestParseGenerativeJson:
    """JSON is recovered from fenced or bare responses."""

    def test_bare_json(self):
        assert parse_generative_json('{"a": 1}') == {"a": 1}

    def test_json_fence(self):
        assert parse_generative_json('Here you go:\n```json\n{"a": 1}\n```\nThanks') == {"a": 1}

    def test_plain_fence(self):
        assert parse_generative_json('```\n[1, 2]\n```') == [1, 2]

    def test_unterminated_fence(self):
        assert parse_generative_json('```json\n{"a": 1}') == {"a": 1}

    def test_empty_raises(self):
        with pytest.raises(MalformedGenerativeOutput, match="Empty"):
            parse_generative_json("   ")

    def test_garbage_raises(self):
        with pytest.raises(MalformedGenerativeOutput, match="not valid JSON"):
            parse_generative_json("I could not find anything about this company.")


class TestNormalizeShape:
    """Any JSON value normalizes to a complete result."""

    @pytest.mark.parametrize("data", [None, [], "text", 42, {"company_profile": "oops", "recent_signals": "none"}])
    def test_never_raises(self, data):
        research = normalize_research_output(data, fallback_name="Acme")

        assert research.company_profile.confirmed_name == "Acme"
        assert research.recent_signals == []
        assert set(research.persona_angles) == set(PERSONA_KEYS)
        assert research.outreach_priority.recommended_personas == []

    def test_profile_defaults(self):
        profile = normalize_research_output({}).company_profile
        assert profile.confirmed_name == "Unknown Company"
        assert profile.industry == NOT_SPECIFIED
        assert profile.estimated_revenue == NOT_AVAILABLE

    def test_profile_scalar_coercion(self):
        data = {
            "company_profile": {
                "confirmed_name": "Acme Foods Inc.",
                "employee_count": 1200,
                "estimated_revenue": {"value": 2},
                "headquarters": ["Chicago", "IL"],
                "market_position": "",
                "unexpected": "ignored",
            }
        }

        profile = normalize_research_output(data, fallback_name="Acme").company_profile

        assert profile.confirmed_name == "Acme Foods Inc."
        assert profile.employee_count == "1200"
        assert profile.estimated_revenue == NOT_AVAILABLE
        assert profile.headquarters == "Chicago; IL"
        assert profile.market_position == NOT_AVAILABLE


class TestSignals:
    """Signals are coerced, aliased, or dropped."""

    def test_valid_signal(self):
        data = {
            "recent_signals": [
                {
                    "signal_type": "Pricing",
                    "description": "Raised list prices 5%",
                    "source": "Reuters",
                    "source_url": "https://reuters.com/x",
                    "date": "2025-04-02",
                    "date_precision": "day",
                    "credibility_score": "0.95",
                    "relevance": "margin pressure",
                }
            ]
        }

        signal = normalize_research_output(data).recent_signals[0]

        assert signal.signal_type == "pricing"
        assert signal.date_precision == DatePrecision.EXACT
        assert signal.credibility_score == 0.95

    def test_aliases_and_defaults(self):
        data = {"recent_signals": [{"type": "rumor", "headline": "New CFO hired", "credibility": 7}]}

        signal = normalize_research_output(data).recent_signals[0]

        assert signal.description == "New CFO hired"
        assert signal.signal_type == "industry"
        assert signal.credibility_score == 1.0
        assert signal.source == "Unknown"
        assert signal.date_precision == DatePrecision.UNKNOWN

    def test_invalid_elements_dropped(self):
        data = {"recent_signals": ["just text", {"source": "no description"}, {"description": "kept"}, None]}
        signals = normalize_research_output(data).recent_signals
        assert [s.description for s in signals] == ["kept"]

    def test_approximate_precision(self):
        data = {"recent_signals": [{"description": "x", "date_precision": "approximate"}]}
        assert normalize_research_output(data).recent_signals[0].date_precision == DatePrecision.UNKNOWN

    def test_evidence_items(self):
        data = {"recent_signals": [{"description": "Margin pressure", "relevance": "pricing", "source": "FT", "source_url": "https://ft.com/a"}]}
        item = normalize_research_output(data).evidence_items()[0]
        assert item.matchable_text() == "Margin pressure pricing FT"
        assert item.source_url == "https://ft.com/a"

    def test_missing_source_url_becomes_none(self):
        data = {"recent_signals": [{"description": "Margin pressure"}, {"description": "Price war", "source_url": ""}]}
        items = normalize_research_output(data).evidence_items()
        assert [item.source_url for item in items] == [None, None]


class TestPersonasAndPriority:
    def test_persona_aliases_and_fill(self):
        data = {"persona_angles": {"cfo_finance": {"hook": "Margin squeeze", "question": "Where is margin leaking?"}, "bogus": "x"}}

        angles = normalize_research_output(data).persona_angles

        assert angles["cfo_finance"].primary_hook == "Margin squeeze"
        assert angles["cfo_finance"].question_to_pose == "Where is margin leaking?"
        assert angles["cfo_finance"].supporting_point == NOT_AVAILABLE
        assert angles["ceo_gm"].primary_hook == NOT_AVAILABLE
        assert "bogus" not in angles

    def test_priority_coercion(self):
        data = {
            "outreach_priority": {"recommended_personas": "cfo_finance", "cautions": ["Recent layoffs", "Pending merger"]},
            "research_gaps": ["No revenue data", "", 3],
        }

        research = normalize_research_output(data)

        assert research.outreach_priority.recommended_personas == ["cfo_finance"]
        assert research.outreach_priority.cautions == "Recent layoffs; Pending merger"
        assert research.outreach_priority.timing_notes == NOT_AVAILABLE
        assert research.research_gaps == ["No revenue data", "3"]

    def test_to_dict_is_json_ready(self):
        data = normalize_research_output({"recent_signals": [{"description": "x", "date_precision": "quarter"}]}).to_dict()
        assert data["recent_signals"][0]["date_precision"] == "quarter"
