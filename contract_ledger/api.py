"""
Contract Ledger API

Stateless HTTP surface over the ledger engine: the caller posts the contract
and receives the projection or the mutation outcome. Nothing is stored.
"""

from datetime import date
from typing import Optional

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException

from . import __version__
from .config import get_config
from .contracts import InterestMode, PaymentType
from .events import PenaltyKind
from .interest import (
    calculate_total_interest, calculate_installment_value, calculate_price_installment,
    solve_rate_for_installment_value
)
from .logging_config import setup_logging
from .money import decimal_from_string
from .mutations import (
    PaymentKind, register_payment, register_interest_only_payment, register_historical_interest,
    register_historical_installment_interest, register_amortization,
    register_renegotiation, apply_daily_penalty, edit_daily_penalty, apply_cumulative_penalty,
    set_overdue_config, remove_daily_penalty, remove_all_daily_penalties, remove_overdue_config
)
from .schedule import Cadence, generate_schedule
from .schemas import (
    ContractRequest, PaymentRequest, InterestOnlyPaymentRequest, HistoricalInterestRequest,
    AmortizationRequest, RenegotiationRequest, PenaltyRequest, RemovePenaltyRequest, ScheduleRequest,
    InterestRequest, projection_to_dict, penalty_to_dict, loan_status_to_dict,
    mutation_to_dict
)
from .store import ProjectionCache
from .projector import LoanStatus

ledger_router = APIRouter()
tools_router = APIRouter()

# Shared memo of folded annotations
projection_cache = ProjectionCache()


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


@ledger_router.post("/status")
async def contract_status(request: ContractRequest):
    """Display status of a contract"""
    try:
        contract = request.contract.to_contract()
        projection = projection_cache.project(contract, _parse_date(request.today))
        return loan_status_to_dict(LoanStatus(
            is_paid=projection.is_paid,
            is_overdue=projection.is_overdue,
            overdue_installments=projection.overdue_installments,
            total_per_installment=projection.installment_value,
        ))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/projection")
async def contract_projection(request: ContractRequest):
    """Full per-installment projection of a contract"""
    try:
        contract = request.contract.to_contract()
        projection = projection_cache.project(contract, _parse_date(request.today))
        return projection_to_dict(projection)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/penalty")
async def contract_penalty(request: ContractRequest):
    """Computed overdue penalty with its breakdown"""
    try:
        contract = request.contract.to_contract()
        projection = projection_cache.project(contract, _parse_date(request.today))
        return penalty_to_dict(projection)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/payments")
async def payment(request: PaymentRequest):
    """Register a payment"""
    try:
        contract = request.contract.to_contract()
        result = register_payment(
            contract,
            decimal_from_string(request.amount),
            date.fromisoformat(request.payment_date),
            kind=PaymentKind(request.kind),
            installment_indices=request.installment_indices,
            today=_parse_date(request.today),
        )
        return mutation_to_dict(result, contract)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/interest-only-payments")
async def interest_only_payment(request: InterestOnlyPaymentRequest):
    """Register an interest-only payment, optionally with a renewal fee"""
    try:
        contract = request.contract.to_contract()
        result = register_interest_only_payment(
            contract,
            decimal_from_string(request.amount),
            date.fromisoformat(request.payment_date),
            renewal_fee=decimal_from_string(request.renewal_fee) if request.renewal_fee else None,
            today=_parse_date(request.today),
        )
        return mutation_to_dict(result, contract)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/historical-interest")
async def historical_interest(request: HistoricalInterestRequest):
    """Record interest received before the contract entered the ledger"""
    try:
        contract = request.contract.to_contract()
        if request.amount is not None:
            result = register_historical_interest(contract, decimal_from_string(request.amount))
        elif request.installment_indices:
            result = register_historical_installment_interest(
                contract, request.installment_indices, today=_parse_date(request.today)
            )
        else:
            raise ValueError("Historical interest needs an amount or installment indices")
        return mutation_to_dict(result, contract)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/amortizations")
async def amortization(request: AmortizationRequest):
    """Register a principal reduction"""
    try:
        contract = request.contract.to_contract()
        result = register_amortization(
            contract, decimal_from_string(request.amount), date.fromisoformat(request.applied_on)
        )
        return mutation_to_dict(result, contract)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/renegotiations")
async def renegotiation(request: RenegotiationRequest):
    """Replace the remaining terms of a contract"""
    try:
        contract = request.contract.to_contract()
        result = register_renegotiation(
            contract,
            decimal_from_string(request.new_rate),
            request.new_installment_count,
            today=_parse_date(request.today),
            new_principal=(
                decimal_from_string(request.new_principal) if request.new_principal else None
            ),
            interest_mode=InterestMode(request.interest_mode) if request.interest_mode else None,
            payment_type=PaymentType(request.payment_type) if request.payment_type else None,
            new_installment_value=(
                decimal_from_string(request.new_installment_value)
                if request.new_installment_value else None
            ),
            first_due_date=_parse_date(request.first_due_date),
            skip_saturday=request.skip_saturday,
            skip_sunday=request.skip_sunday,
            skip_holidays=request.skip_holidays,
        )
        return mutation_to_dict(result, contract)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/penalties")
async def penalty(request: PenaltyRequest):
    """Apply, edit or materialize a penalty, or set the overdue rule"""
    try:
        contract = request.contract.to_contract()
        if request.mode == "cumulative":
            result = apply_cumulative_penalty(contract, _parse_date(request.today))
        elif request.mode == "overdue_config":
            if not request.kind or request.value is None:
                raise ValueError("Overdue rule needs a kind and a value")
            result = set_overdue_config(
                contract, PenaltyKind(request.kind), decimal_from_string(request.value)
            )
        elif request.mode in ("daily", "edit"):
            if request.index is None or request.amount is None:
                raise ValueError("Installment penalty needs an index and an amount")
            operation = edit_daily_penalty if request.mode == "edit" else apply_daily_penalty
            result = operation(contract, request.index, decimal_from_string(request.amount))
        else:
            raise ValueError(f"Unknown penalty mode: {request.mode}")
        return mutation_to_dict(result, contract)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@ledger_router.post("/penalties/remove")
async def remove_penalty(request: RemovePenaltyRequest):
    """Remove one installment penalty, all of them, or the overdue rule"""
    try:
        contract = request.contract.to_contract()
        if request.overdue_config:
            result = remove_overdue_config(contract)
        elif request.index is None:
            result = remove_all_daily_penalties(contract)
        else:
            result = remove_daily_penalty(contract, request.index)
        return mutation_to_dict(result, contract)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@tools_router.post("/schedule")
async def schedule(request: ScheduleRequest):
    """Generate due dates"""
    try:
        dates = generate_schedule(
            date.fromisoformat(request.start_date),
            request.count,
            Cadence(request.cadence),
            request.skip_saturday,
            request.skip_sunday,
            request.skip_holidays,
        )
        return {"due_dates": [d.isoformat() for d in dates]}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@tools_router.post("/interest")
async def interest(request: InterestRequest):
    """Total interest and installment value for a set of terms"""
    try:
        principal = decimal_from_string(request.principal)
        rate = decimal_from_string(request.rate)
        mode = InterestMode(request.interest_mode)
        total_interest = calculate_total_interest(principal, rate, request.installment_count, mode)
        response = {
            "total_interest": str(total_interest),
            "installment_value": str(
                calculate_installment_value(principal, total_interest, request.installment_count)
            ),
            "price_installment": str(
                calculate_price_installment(principal, rate, request.installment_count)
            ),
        }
        if request.target_installment_value:
            response["solved_rate"] = str(solve_rate_for_installment_value(
                principal, decimal_from_string(request.target_installment_value),
                request.installment_count, mode
            ))
        return response
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Contract Ledger API",
        description="Loan contract ledger: projections and mutations over annotated contracts",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.include_router(ledger_router, prefix="/ledger", tags=["Ledger"])
    app.include_router(tools_router, tags=["Calculators"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "contract_ledger_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    settings = get_config()
    setup_logging(settings.log_level, log_format=settings.log_format, log_file=settings.log_file)
    uvicorn.run(
        "contract_ledger.api:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=debug,
        log_level="info"
    )
