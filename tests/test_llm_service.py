import json

import pytest

import llm_service
from errors import CategorizationError

BATCH = [
    {"description": "Monthly supporter", "amount": 5.0, "source": "Patreon"},
    {"description": "Logo design", "amount": 300.0, "source": "Upwork"},
    {"description": "Amazon referral", "amount": 12.5, "source": "Blog"},
]


def test_categorize_unconfigured_returns_defaults(llm_disabled):
    results = llm_service.categorize_transactions(BATCH)
    assert [r["category"] for r in results] == ["Other"] * 3
    assert all(r["confidence"] == 0 for r in results)
    assert results[1]["description"] == "Logo design"


def test_categorize_empty_batch(fake_model):
    assert llm_service.categorize_transactions([]) == []
    assert fake_model.prompts == []


def test_categorize_aligns_results_by_index(fake_model):
    fake_model.reply = "```json\n" + json.dumps([
        {"index": 3, "category": "Affiliate", "confidence": 0.8},
        {"index": 1, "category": "Subscription", "confidence": 0.95},
    ]) + "\n```"
    results = llm_service.categorize_transactions(BATCH)
    assert [(r["category"], r["confidence"]) for r in results] == [
        ("Subscription", 0.95), ("Other", 0.0), ("Affiliate", 0.8),
    ]


def test_categorize_prompt_lists_every_transaction(fake_model):
    llm_service.categorize_transactions(BATCH)
    [prompt] = fake_model.prompts
    assert '1. "Monthly supporter" - $5.0 (from Patreon)' in prompt
    assert '3. "Amazon referral"' in prompt
    for category in llm_service.CATEGORIES:
        assert category in prompt


def test_categorize_unknown_category_falls_back(fake_model):
    fake_model.reply = json.dumps([
        {"index": 1, "category": "Crypto", "confidence": 0.99},
        {"index": 2, "category": "Freelance", "confidence": 7},
        {"index": 3, "category": "Affiliate", "confidence": "high"},
    ])
    results = llm_service.categorize_transactions(BATCH)
    assert (results[0]["category"], results[0]["confidence"]) == ("Other", 0.0)
    assert (results[1]["category"], results[1]["confidence"]) == ("Freelance", 1.0)
    assert (results[2]["category"], results[2]["confidence"]) == ("Affiliate", 0.0)


@pytest.mark.parametrize("reply", ["I cannot help with that.", "[not json]", ""])
def test_categorize_unusable_reply_raises(fake_model, reply):
    fake_model.reply = reply
    with pytest.raises(CategorizationError):
        llm_service.categorize_transactions(BATCH)


def test_categorize_model_error_raises(fake_model):
    fake_model.error = TimeoutError("deadline exceeded")
    with pytest.raises(CategorizationError, match="TimeoutError"):
        llm_service.categorize_transactions(BATCH)


# --- Insights ---

INSIGHTS_INPUT = {
    "totalIncome": 1100.0,
    "previousPeriodIncome": 1000.0,
    "transactionCount": 4,
    "sourceBreakdown": [
        {"source": "Upwork", "amount": 800.0, "count": 1},
        {"source": "Patreon", "amount": 300.0, "count": 3},
    ],
    "recentTransactions": [{"description": "Logo", "amount": 800.0, "date": "2024-03-02", "source": "Upwork"}],
    "period": "2024-02-04 to 2024-03-03",
}


def test_default_insights_trend_up():
    result = llm_service.default_insights(INSIGHTS_INPUT)
    assert result["trend"] == "up"
    assert result["trendPercentage"] == 10
    assert result["topSource"] == "Upwork"
    assert result["aiGenerated"] is False
    assert result["summary"] == "You earned $1100.00 from 4 transactions this period."


@pytest.mark.parametrize("total,previous,trend", [
    (1040.0, 1000.0, "stable"),
    (900.0, 1000.0, "down"),
    (500.0, 0.0, "stable"),
])
def test_default_insights_trend(total, previous, trend):
    data = dict(INSIGHTS_INPUT, totalIncome=total, previousPeriodIncome=previous)
    assert llm_service.default_insights(data)["trend"] == trend


def test_default_insights_without_sources():
    result = llm_service.default_insights({"totalIncome": 0, "transactionCount": 0})
    assert result["topSource"] is None
    assert "Start tracking income sources" in result["highlights"]


def test_generate_insights_unconfigured(llm_disabled):
    assert llm_service.generate_income_insights(INSIGHTS_INPUT)["aiGenerated"] is False


def test_generate_insights_from_model(fake_model):
    fake_model.reply = "Here you go:\n" + json.dumps({
        "summary": "Solid month.",
        "highlights": ["a", "b", "c", "d"],
        "recommendations": ["raise rates", "diversify", "extra"],
        "topSource": "Upwork",
        "trend": "up",
        "trendPercentage": 10,
    })
    result = llm_service.generate_income_insights(INSIGHTS_INPUT)
    assert result["aiGenerated"] is True
    assert result["summary"] == "Solid month."
    assert result["highlights"] == ["a", "b", "c"]
    assert result["recommendations"] == ["raise rates", "diversify"]
    assert "Upwork: $800.00 (1 transactions)" in fake_model.prompts[0]


def test_generate_insights_sanitizes_model_fields(fake_model):
    fake_model.reply = json.dumps({"summary": "", "highlights": "nope", "trend": "sideways",
                                   "trendPercentage": "lots"})
    result = llm_service.generate_income_insights(INSIGHTS_INPUT)
    assert result["summary"] == "Unable to generate summary"
    assert result["highlights"] == []
    assert result["trend"] == "stable"
    assert result["trendPercentage"] == 0


def test_generate_insights_model_failure_falls_back(fake_model):
    fake_model.error = RuntimeError("quota exceeded")
    result = llm_service.generate_income_insights(INSIGHTS_INPUT)
    assert result["aiGenerated"] is False
    assert result["trend"] == "up"
