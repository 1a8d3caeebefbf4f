"""Conversion webhook."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from affiliate_ledger.dependencies import get_db
from affiliate_ledger.schemas import ConversionPayload, ConversionResult
from affiliate_ledger.services import AttributionService

router = APIRouter(tags=["Conversions"])


@router.post("/conversions", response_model=ConversionResult)
def ingest_conversion(payload: ConversionPayload, db: Session = Depends(get_db)) -> ConversionResult:
    return AttributionService(db).ingest_conversion(payload)
