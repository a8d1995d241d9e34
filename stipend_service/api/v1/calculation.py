"""Calculation endpoints - preview deductions without persisting anything"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stipend_service.api.dependencies import ensure_student_access, get_context
from stipend_service.api.v1.schemas import CalculationRequest, CalculationResponse
from stipend_service.infrastructure.database.session import get_db
from stipend_service.services.calculation import CalculationService
from stipend_service.services.context import RequestContext

router = APIRouter()


def get_calculation_service(db: Session = Depends(get_db), ctx: RequestContext = Depends(get_context)) -> CalculationService:
    return CalculationService(db, ctx)


@router.post("/calculations", response_model=CalculationResponse)
def calculate(
    body: CalculationRequest,
    service: CalculationService = Depends(get_calculation_service),
    ctx: RequestContext = Depends(get_context),
):
    """
    Calculate the deductions and net amount for a base amount.

    Rules are applied by priority DESC, then name ASC; each amount is clamped
    to the rule's [min, max] and capped to what remains of the base.
    """
    ensure_student_access(ctx, body.student_id)
    return service.calculate(body.student_id, body.stipend_class, body.amount, body.rule_ids)


@router.post("/calculations/monthly", response_model=CalculationResponse)
def calculate_monthly(
    body: CalculationRequest,
    service: CalculationService = Depends(get_calculation_service),
    ctx: RequestContext = Depends(get_context),
):
    """Treats amount as the annual figure and calculates one month's payout"""
    ensure_student_access(ctx, body.student_id)
    return service.calculate_monthly(body.student_id, body.stipend_class, body.amount, body.rule_ids)


@router.post("/calculations/annual", response_model=CalculationResponse)
def calculate_annual(
    body: CalculationRequest,
    service: CalculationService = Depends(get_calculation_service),
    ctx: RequestContext = Depends(get_context),
):
    ensure_student_access(ctx, body.student_id)
    return service.calculate_annual(body.student_id, body.stipend_class, body.amount, body.rule_ids)
