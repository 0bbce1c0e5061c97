# routers/income_router.py
import logging
import datetime as dt
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from models_pydantic import (
    ApiResponse, IncomeRecordListPydantic, IncomeSourcePydantic, IncomeSummaryPydantic,
    UserPydantic, success_response
)
import database_supabase as db_supabase
from auth.dependencies import get_current_supabase_user

log = logging.getLogger('income_router')
if not log.handlers and not (hasattr(log.parent, 'handlers') and log.parent.handlers):
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s:%(module)s:%(funcName)s:%(lineno)d] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)
    log.propagate = False

router = APIRouter(
    prefix="/api/income",
    tags=["Income"],
    dependencies=[Depends(get_current_supabase_user)],
    responses={404: {"description": "Not found"}},
)


def _check_range(start_date: Optional[dt.date], end_date: Optional[dt.date]):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Start date cannot be after end date.")


@router.get("", response_model=ApiResponse[IncomeRecordListPydantic], summary="List imported income records")
async def list_income_records(
        current_user: UserPydantic = Depends(get_current_supabase_user),
        start_date: Optional[dt.date] = Query(None, description="Earliest transaction date (YYYY-MM-DD)."),
        end_date: Optional[dt.date] = Query(None, description="Latest transaction date (YYYY-MM-DD)."),
        source_id: Optional[str] = Query(None, description="Only records of this income source."),
        category: Optional[str] = Query(None, description="Only records in this category."),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
):
    _check_range(start_date, end_date)
    records, total = db_supabase.query_records(
        current_user.id, start_date=start_date, end_date=end_date, source_id=source_id,
        category=category, limit=limit, offset=offset
    )
    return success_response({"records": records, "total": total})


@router.get("/sources", response_model=ApiResponse[List[IncomeSourcePydantic]],
            summary="List the caller's income sources")
async def list_income_sources(current_user: UserPydantic = Depends(get_current_supabase_user)):
    sources = db_supabase.get_sources(current_user.id)
    return success_response([s.to_dict() for s in sources])


@router.get("/summary", response_model=ApiResponse[IncomeSummaryPydantic],
            summary="Totals by source and by month")
async def get_income_summary(
        current_user: UserPydantic = Depends(get_current_supabase_user),
        start_date: Optional[dt.date] = Query(None),
        end_date: Optional[dt.date] = Query(None),
):
    _check_range(start_date, end_date)
    summary = db_supabase.get_summary(current_user.id, start_date, end_date)
    log.info(f"User {current_user.id}: Summary of {summary['recordCount']} records ({start_date} to {end_date}).")
    return success_response({
        "totalAmount": str(summary['totalAmount']),
        "recordCount": summary['recordCount'],
        "bySource": {k: str(v) for k, v in summary['bySource'].items()},
        "byMonth": {k: str(v) for k, v in summary['byMonth'].items()},
    })
