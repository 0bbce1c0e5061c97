# insights.py
import logging
import datetime as dt
from dateutil.relativedelta import relativedelta
from decimal import Decimal
from typing import List, Dict, Any, Optional, Tuple

import database_supabase as db_supabase
import llm_service

log = logging.getLogger('insights')
log.setLevel(logging.INFO)
if not log.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)

PERIOD_MONTHS = {'month': 1, 'quarter': 3, 'year': 12}
RECENT_TRANSACTIONS_LIMIT = 5


def period_bounds(period: str, today: Optional[dt.date] = None) -> Tuple[dt.date, dt.date, dt.date, dt.date]:
    """
    Returns (start, end, previous_start, previous_end) for the period ending today.
    The previous period is the same length immediately before.
    """
    if period not in PERIOD_MONTHS:
        raise ValueError(f"Unknown period '{period}'. Expected one of {sorted(PERIOD_MONTHS)}.")
    today = today or dt.date.today()
    months = PERIOD_MONTHS[period]
    start = today - relativedelta(months=months) + dt.timedelta(days=1)
    previous_end = start - dt.timedelta(days=1)
    previous_start = start - relativedelta(months=months)
    return start, today, previous_start, previous_end


def build_insights_input(user_id: str, period: str, today: Optional[dt.date] = None) -> Dict[str, Any]:
    start, end, previous_start, previous_end = period_bounds(period, today)
    current = db_supabase.get_summary(user_id, start, end)
    previous = db_supabase.get_summary(user_id, previous_start, previous_end)
    recent, _ = db_supabase.query_records(user_id, start_date=start, end_date=end,
                                          limit=RECENT_TRANSACTIONS_LIMIT, offset=0)

    counts = current.get('countBySource', {})
    source_breakdown: List[Dict[str, Any]] = sorted(
        (
            {"source": name, "amount": float(amount), "count": counts.get(name, 0)}
            for name, amount in current['bySource'].items()
        ),
        key=lambda s: s['amount'], reverse=True
    )
    recent_transactions = [
        {
            "description": r.get('description') or '',
            "amount": float(Decimal(r['amount'])),
            "date": str(r['transaction_date']),
            "source": r.get('source_name') or 'Unknown',
        }
        for r in recent
    ]
    log.debug(f"User {user_id}: Insights input for {period} {start}..{end}: "
              f"{current['recordCount']} records, {len(source_breakdown)} sources.")
    return {
        "totalIncome": float(current['totalAmount']),
        "previousPeriodIncome": float(previous['totalAmount']),
        "transactionCount": current['recordCount'],
        "sourceBreakdown": source_breakdown,
        "recentTransactions": recent_transactions,
        "period": f"{start.isoformat()} to {end.isoformat()}",
    }


def generate_insights(user_id: str, period: str = 'month', today: Optional[dt.date] = None) -> Dict[str, Any]:
    data = build_insights_input(user_id, period, today)
    result = llm_service.generate_income_insights(data)
    result["period"] = data["period"]
    log.info(f"User {user_id}: Generated {'AI' if result.get('aiGenerated') else 'default'} insights for {period}.")
    return result
