import google.generativeai as genai
import logging
import json
import re
from typing import Dict, Any, List, Optional

from config import settings
from errors import CategorizationError

log = logging.getLogger('llm_service')
log.setLevel(logging.DEBUG if settings.DEBUG_MODE else logging.INFO)
if not log.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)

CATEGORIES: List[str] = [
    'Subscription',
    'Freelance',
    'Consulting',
    'Product Sales',
    'Affiliate',
    'Sponsorship',
    'Donations',
    'Refund',
    'Other',
]
DEFAULT_CATEGORY = 'Other'
TRENDS = ('up', 'down', 'stable')

model = None
is_configured_flag = False

try:
    if not settings.GOOGLE_API_KEY:
        log.warning("GOOGLE_API_KEY not set. Smart categorization and AI insights will use defaults.")
    else:
        genai.configure(api_key=settings.GOOGLE_API_KEY)
        model = genai.GenerativeModel(settings.LLM_MODEL_NAME)
        is_configured_flag = True
        log.info(f"Gemini API configured with model '{settings.LLM_MODEL_NAME}'.")
except Exception as e:
    log.error(f"Initial Gemini configuration failed: {e}", exc_info=True)


def is_configured() -> bool:
    return is_configured_flag and model is not None


def _default_categories(transactions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"description": t.get('description') or '', "category": DEFAULT_CATEGORY, "confidence": 0.0}
        for t in transactions
    ]


def _extract_json(text: str, pattern: str) -> Any:
    """Pulls the first JSON array/object out of a model reply (which may be wrapped in markdown fences)."""
    match = re.search(pattern, text or '')
    if not match:
        raise ValueError("No JSON payload in model response.")
    return json.loads(match.group(0))


def _generate(prompt: str, temperature: float, max_output_tokens: int) -> str:
    response = model.generate_content(
        prompt,
        generation_config=genai.GenerationConfig(temperature=temperature, max_output_tokens=max_output_tokens),
    )
    if not getattr(response, 'text', None):
        raise ValueError("Empty response from model.")
    return response.text


def build_categorization_prompt(transactions: List[Dict[str, Any]]) -> str:
    lines = []
    for i, t in enumerate(transactions, start=1):
        source = f" (from {t['source']})" if t.get('source') else ''
        lines.append(f'{i}. "{t.get("description") or ""}" - ${t.get("amount")}{source}')
    return "\n".join([
        "You are a financial transaction categorizer. Categorize each income transaction into exactly ONE of "
        "these categories:",
        ", ".join(CATEGORIES),
        "",
        "Transactions to categorize:",
        *lines,
        "",
        "Respond ONLY with a JSON array in this exact format, no other text:",
        '[{"index": 1, "category": "Category", "confidence": 0.95}, ...]',
        "",
        "The confidence should be between 0 and 1.",
    ])


def categorize_transactions(transactions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Suggests a category for each {description, amount, source} item.

    Returns one {description, category, confidence} per input, in input order.
    When the model is not configured every item gets 'Other' with confidence 0.
    Raises CategorizationError if the model call or its reply is unusable.
    """
    if not transactions:
        return []
    if not is_configured():
        return _default_categories(transactions)

    prompt = build_categorization_prompt(transactions)
    log.debug(f"Categorization prompt (first 300 chars):\n{prompt[:300]}")
    try:
        reply = _generate(prompt, temperature=0.1, max_output_tokens=1000)
        results = _extract_json(reply, r'\[[\s\S]*\]')
    except Exception as e:
        log.error(f"Error calling Gemini API for categorization: {e}", exc_info=True)
        raise CategorizationError(f"Categorization failed ({type(e).__name__}).") from e

    by_index: Dict[int, Dict[str, Any]] = {}
    for item in results if isinstance(results, list) else []:
        if isinstance(item, dict) and isinstance(item.get('index'), int):
            by_index[item['index']] = item

    categorized = []
    for i, t in enumerate(transactions, start=1):
        result = by_index.get(i, {})
        category = result.get('category')
        try:
            confidence = float(result.get('confidence') or 0)
        except (TypeError, ValueError):
            confidence = 0.0
        if category not in CATEGORIES:
            category, confidence = DEFAULT_CATEGORY, 0.0
        categorized.append({
            "description": t.get('description') or '',
            "category": category,
            "confidence": max(0.0, min(confidence, 1.0)),
        })
    return categorized


# --- Income Insights ---
def default_insights(data: Dict[str, Any]) -> Dict[str, Any]:
    """Deterministic insights used when the model is unavailable."""
    total = float(data.get('totalIncome') or 0)
    previous = float(data.get('previousPeriodIncome') or 0)
    count = int(data.get('transactionCount') or 0)
    breakdown = data.get('sourceBreakdown') or []

    change = ((total - previous) / previous) * 100 if previous > 0 else 0.0
    trend = 'up' if change > 5 else 'down' if change < -5 else 'stable'
    top_source = max(breakdown, key=lambda s: s['amount'])['source'] if breakdown else None

    return {
        "summary": f"You earned ${total:.2f} from {count} transactions this period.",
        "highlights": [
            f"Total income: ${total:.2f}",
            f"Top source: {top_source}" if top_source else "Start tracking income sources",
            f"{count} transactions recorded",
        ],
        "recommendations": [
            "Keep tracking all income sources for better insights",
            "AI-powered insights available when API key is configured",
        ],
        "topSource": top_source,
        "trend": trend,
        "trendPercentage": round(change),
        "aiGenerated": False,
    }


def build_insights_prompt(data: Dict[str, Any]) -> str:
    sources = "\n".join(
        f"- {s['source']}: ${float(s['amount']):.2f} ({s['count']} transactions)"
        for s in data.get('sourceBreakdown') or []
    )
    recent = "\n".join(
        f"- {t['date']}: ${t['amount']} from {t['source']} - \"{t['description']}\""
        for t in (data.get('recentTransactions') or [])[:5]
    )
    return f"""You are a financial analyst providing insights for a freelancer/creator's income tracker.

Income Data for {data.get('period')}:
- Total Income: ${float(data.get('totalIncome') or 0):.2f}
- Previous Period Income: ${float(data.get('previousPeriodIncome') or 0):.2f}
- Number of Transactions: {data.get('transactionCount', 0)}

Income by Source:
{sources or '- (none)'}

Recent Transactions:
{recent or '- (none)'}

Provide insights in this exact JSON format, no other text:
{{
  "summary": "A 2-3 sentence summary of the income situation",
  "highlights": ["highlight 1", "highlight 2", "highlight 3"],
  "recommendations": ["actionable recommendation 1", "actionable recommendation 2"],
  "topSource": "name of top income source or null",
  "trend": "up" or "down" or "stable",
  "trendPercentage": number (percentage change from previous period)
}}

Be encouraging but realistic. Focus on actionable insights."""


def generate_income_insights(data: Dict[str, Any]) -> Dict[str, Any]:
    if not is_configured():
        return default_insights(data)

    try:
        reply = _generate(build_insights_prompt(data), temperature=0.7, max_output_tokens=500)
        insights = _extract_json(reply, r'\{[\s\S]*\}')
        if not isinstance(insights, dict):
            raise ValueError("Insights payload is not an object.")
    except Exception as e:
        log.error(f"Error calling Gemini API for insights: {e}", exc_info=True)
        return default_insights(data)

    highlights = insights.get('highlights')
    recommendations = insights.get('recommendations')
    trend_pct = insights.get('trendPercentage')
    return {
        "summary": insights.get('summary') or 'Unable to generate summary',
        "highlights": [str(h) for h in highlights[:3]] if isinstance(highlights, list) else [],
        "recommendations": [str(r) for r in recommendations[:2]] if isinstance(recommendations, list) else [],
        "topSource": insights.get('topSource') or None,
        "trend": insights.get('trend') if insights.get('trend') in TRENDS else 'stable',
        "trendPercentage": trend_pct if isinstance(trend_pct, (int, float)) and not isinstance(trend_pct, bool) else 0,
        "aiGenerated": True,
    }
