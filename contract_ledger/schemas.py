"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .contracts import Contract, ContractStatus, InterestMode, PaymentType
from .money import decimal_from_string
from .mutations import MutationResult, PaymentRecord
from .projector import InstallmentView, LedgerProjection, LoanStatus


def _optional_decimal(value: Optional[str]) -> Optional[Decimal]:
    return decimal_from_string(value) if value is not None else None


def _optional_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _optional_str(value) -> Optional[str]:
    return str(value) if value is not None else None


class ContractModel(BaseModel):
    id: Optional[str] = None
    principal_amount: str = Field(..., description="Decimal amount as string")
    interest_rate: str = Field(..., description="Rate in percent, e.g. '10'")
    interest_mode: str = InterestMode.PER_INSTALLMENT.value
    payment_type: str = PaymentType.SINGLE.value
    installment_count: int = 1
    installment_due_dates: List[str] = Field(default_factory=list)  # ISO date strings
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    stored_total_interest: Optional[str] = None
    installment_value: Optional[str] = None
    outstanding_balance: str = "0"
    total_paid: str = "0"
    annotation: str = ""
    status: str = ContractStatus.ACTIVE.value

    def to_contract(self) -> Contract:
        kwargs = dict(
            principal_amount=decimal_from_string(self.principal_amount),
            interest_rate=decimal_from_string(self.interest_rate),
            interest_mode=InterestMode(self.interest_mode),
            payment_type=PaymentType(self.payment_type),
            installment_count=self.installment_count,
            installment_due_dates=[date.fromisoformat(d) for d in self.installment_due_dates],
            start_date=_optional_date(self.start_date),
            due_date=_optional_date(self.due_date),
            stored_total_interest=_optional_decimal(self.stored_total_interest),
            installment_value=_optional_decimal(self.installment_value),
            outstanding_balance=decimal_from_string(self.outstanding_balance),
            total_paid=decimal_from_string(self.total_paid),
            annotation=self.annotation,
            status=ContractStatus(self.status),
        )
        if self.id:
            kwargs['id'] = self.id
        return Contract(**kwargs)

    @classmethod
    def from_contract(cls, contract: Contract) -> 'ContractModel':
        return cls(**contract.to_dict())


# Ledger schemas
class ContractRequest(BaseModel):
    contract: ContractModel
    today: Optional[str] = None  # ISO date string


class PaymentRequest(BaseModel):
    contract: ContractModel
    amount: str  # Decimal as string
    payment_date: str  # ISO date string
    kind: str = "partial"
    installment_indices: Optional[List[int]] = None
    today: Optional[str] = None


class InterestOnlyPaymentRequest(BaseModel):
    contract: ContractModel
    amount: str
    payment_date: str
    renewal_fee: Optional[str] = None
    today: Optional[str] = None


class HistoricalInterestRequest(BaseModel):
    contract: ContractModel
    amount: Optional[str] = Field(None, description="Raw amount; omit to use installment_indices")
    installment_indices: Optional[List[int]] = None
    today: Optional[str] = None


class AmortizationRequest(BaseModel):
    contract: ContractModel
    amount: str
    applied_on: str


class RenegotiationRequest(BaseModel):
    contract: ContractModel
    new_rate: str
    new_installment_count: int
    today: Optional[str] = None
    new_principal: Optional[str] = None
    interest_mode: Optional[str] = None
    payment_type: Optional[str] = None
    new_installment_value: Optional[str] = None
    first_due_date: Optional[str] = None
    skip_saturday: Optional[bool] = None
    skip_sunday: Optional[bool] = None
    skip_holidays: Optional[bool] = None


class PenaltyRequest(BaseModel):
    contract: ContractModel
    mode: str = Field("daily", description="daily, edit, cumulative or overdue_config")
    index: Optional[int] = None
    amount: Optional[str] = None
    kind: Optional[str] = None  # percentage or fixed, for overdue_config
    value: Optional[str] = None
    today: Optional[str] = None


class RemovePenaltyRequest(BaseModel):
    contract: ContractModel
    index: Optional[int] = None  # None removes every installment penalty
    overdue_config: bool = False


# Calculator schemas
class ScheduleRequest(BaseModel):
    start_date: str
    count: int
    cadence: str = "monthly"
    skip_saturday: bool = False
    skip_sunday: bool = False
    skip_holidays: bool = False


class InterestRequest(BaseModel):
    principal: str
    rate: str
    installment_count: int = 1
    interest_mode: str = InterestMode.PER_INSTALLMENT.value
    target_installment_value: Optional[str] = None


# Response serializers
def installment_to_dict(view: InstallmentView) -> Dict[str, Any]:
    return {
        "index": view.index,
        "due_date": view.due_date.isoformat() if view.due_date else None,
        "base_value": str(view.base_value),
        "effective_value": str(view.effective_value),
        "paid_amount": str(view.paid_amount),
        "remaining": str(view.remaining),
        "penalty": str(view.penalty),
        "status": view.status.value,
        "days_overdue": view.days_overdue,
        "has_pending_advance": view.has_pending_advance,
    }


def penalty_to_dict(projection: LedgerProjection) -> Dict[str, Any]:
    config = projection.state.overdue_config
    return {
        "overdue_config": {"kind": config.kind.value, "value": str(config.value)} if config else None,
        "total_penalty": str(projection.computed_penalty.total_penalty),
        "breakdown": [
            {"index": line.index, "days_overdue": line.days_overdue, "amount": str(line.amount)}
            for line in projection.computed_penalty.breakdown
        ],
        "daily_penalty_total": str(projection.daily_penalty_total),
    }


def projection_to_dict(projection: LedgerProjection) -> Dict[str, Any]:
    return {
        "contract_id": projection.contract_id,
        "as_of": projection.as_of.isoformat(),
        "principal": str(projection.principal),
        "total_interest": str(projection.total_interest),
        "installment_value": str(projection.installment_value),
        "paid_count": projection.paid_count,
        "first_unpaid_index": projection.first_unpaid_index,
        "tracked_paid_total": str(projection.tracked_paid_total),
        "remaining_amount": str(projection.remaining_amount),
        "realized_interest": str(projection.realized_interest),
        "realized_profit": str(projection.realized_profit),
        "expected_profit": str(projection.expected_profit),
        "is_paid": projection.is_paid,
        "is_overdue": projection.is_overdue,
        "is_historical": projection.is_historical,
        "is_historical_interest": projection.is_historical_interest,
        "is_renegotiated": projection.is_renegotiated,
        "installments": [installment_to_dict(view) for view in projection.installments],
        "penalty": penalty_to_dict(projection),
    }


def loan_status_to_dict(loan_status: LoanStatus) -> Dict[str, Any]:
    return {
        "is_paid": loan_status.is_paid,
        "is_overdue": loan_status.is_overdue,
        "total_per_installment": str(loan_status.total_per_installment),
        "overdue_installments": [
            {
                "index": item.index,
                "due_date": item.due_date.isoformat(),
                "days_overdue": item.days_overdue,
                "amount_due": str(item.amount_due),
            }
            for item in loan_status.overdue_installments
        ],
    }


def payment_record_to_dict(record: Optional[PaymentRecord]) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    return {
        "amount": str(record.amount),
        "principal_paid": str(record.principal_paid),
        "interest_paid": str(record.interest_paid),
        "payment_date": record.payment_date.isoformat(),
        "installment_indices": record.installment_indices,
        "note": record.note,
    }


def mutation_to_dict(result: MutationResult, contract: Contract) -> Dict[str, Any]:
    """Mutation outcome plus the contract with the result applied"""
    return {
        "next_annotation": result.next_annotation,
        "next_outstanding_balance": str(result.next_outstanding_balance),
        "next_total_interest": _optional_str(result.next_total_interest),
        "next_status": result.next_status.value if result.next_status else None,
        "next_total_paid": _optional_str(result.next_total_paid),
        "payment_record": payment_record_to_dict(result.payment_record),
        "contract": ContractModel.from_contract(result.apply_to(contract)).model_dump(),
    }
