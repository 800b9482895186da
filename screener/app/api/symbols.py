"""
Symbol lookup routes backed by the Kite symbol master tables.
Endpoints: /api/symbols/nse-equity, /api/symbols/bse-fo
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from screener.app.common.supabase_client import get_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/symbols", tags=["symbols"])


# =======================
# Response Models
# =======================

class SymbolListResponse(BaseModel):
    success: bool
    symbols: List[Dict[str, Any]]
    count: int


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


def _error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=message).model_dump(),
    )


# =======================
# Routes
# =======================

@router.get(
    "/nse-equity",
    response_model=SymbolListResponse,
    responses={500: {"model": ErrorResponse}},
)
def nse_equity_symbols(limit: int = Query(1000)):
    """Active NSE equity symbols, alphabetical."""
    try:
        supabase = get_client()
        resp = (
            supabase
            .table("kite_nse_equity_symbols")
            .select("symbol, instrument_token, company_name")
            .eq("is_active", True)
            .order("symbol")
            .limit(limit)
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching NSE equity symbols: {e}")
        return _error(str(e))

    rows = resp.data or []
    return SymbolListResponse(success=True, symbols=rows, count=len(rows))


@router.get(
    "/bse-fo",
    response_model=SymbolListResponse,
    responses={500: {"model": ErrorResponse}},
)
def bse_fo_symbols(
    limit: int = Query(1000),
    underlying: Optional[str] = Query(None),
    instrument_type: Optional[str] = Query(None, alias="type"),
):
    """Active BSE F&O contracts, nearest expiry and lowest strike first."""
    try:
        supabase = get_client()
        query = (
            supabase
            .table("kite_bse_fo_symbols")
            .select(
                "symbol, instrument_token, underlying, expiry, "
                "instrument_type, strike, option_type"
            )
            .eq("is_active", True)
        )
        if underlying:
            query = query.eq("underlying", underlying)
        if instrument_type:
            query = query.eq("instrument_type", instrument_type)

        resp = query.order("expiry").order("strike").limit(limit).execute()
    except Exception as e:
        logger.error(f"Error fetching BSE F&O symbols: {e}")
        return _error(str(e))

    rows = resp.data or []
    return SymbolListResponse(success=True, symbols=rows, count=len(rows))
