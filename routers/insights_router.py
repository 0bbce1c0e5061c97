# routers/insights_router.py
import logging
from fastapi import APIRouter, Depends, Query

from models_pydantic import ApiResponse, IncomeInsightPydantic, UserPydantic, success_response
import insights
from auth.dependencies import get_current_supabase_user

router = APIRouter(
    prefix="/api/insights",
    tags=["Insights"],
    dependencies=[Depends(get_current_supabase_user)],
    responses={404: {"description": "Not found"}},
)

log = logging.getLogger('insights_router')
if not log.handlers and not (hasattr(log.parent, 'handlers') and log.parent.handlers):
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)
    log.propagate = False


@router.get("", response_model=ApiResponse[IncomeInsightPydantic],
            summary="AI-assisted income insights for a recent period")
async def get_income_insights(
        current_user: UserPydantic = Depends(get_current_supabase_user),
        period: str = Query("month", pattern="^(month|quarter|year)$",
                            description="Length of the period ending today."),
):
    log.info(f"User {current_user.id}: Insights request for period '{period}'.")
    result = insights.generate_insights(current_user.id, period)
    return success_response(result)
