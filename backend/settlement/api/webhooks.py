from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from settlement.core.db import get_db
from settlement.core.webhooks import handle_webhook


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    # Signature covers the exact bytes Stripe sent; never re-serialize first.
    payload = await request.body()
    outcome = handle_webhook(db, payload, request.headers.get("stripe-signature"))
    return outcome.to_payload()
