"""
Payment gateway callback routes.
The gateway POSTs form data here; both routes bounce the browser to /billing.
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Form
from fastapi.responses import RedirectResponse

from screener.app.common.config import get_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payment"])


def billing_url(**params: str) -> str:
    base = get_config().app_url.rstrip("/")
    return f"{base}/billing?{urlencode(params)}"


@router.post("/success")
async def payment_success(txnid: str = Form("")):
    logger.info(f"Payment success callback for txnid={txnid}")
    return RedirectResponse(billing_url(payment="success", txnid=txnid), status_code=303)


@router.post("/failure")
async def payment_failure(
    txnid: str = Form(""),
    error_message: str = Form("", alias="error_Message"),
):
    logger.warning(f"Payment failure callback for txnid={txnid}: {error_message}")
    return RedirectResponse(billing_url(payment="failed", error=error_message), status_code=303)
