"""
Contract Module

The loan contract record as seen by the ledger engine. The engine reads the
static terms plus the annotation field and hands back the fields it would
rewrite; persistence belongs to the caller.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .money import ZERO, to_decimal


class InterestMode(Enum):
    """How the contract's rate turns into total interest"""
    PER_INSTALLMENT = "per_installment"  # rate charged once per installment
    ON_TOTAL = "on_total"                # rate charged once on the principal
    COMPOUND = "compound"                # rate compounded per installment


class PaymentType(Enum):
    """Repayment plan shape"""
    SINGLE = "single"            # one payment on the due date
    INSTALLMENT = "installment"  # monthly installments
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    DAILY = "daily"


class ContractStatus(Enum):
    """Contract lifecycle states tracked by the engine"""
    ACTIVE = "active"
    PAID = "paid"


@dataclass
class Contract:
    """Loan contract terms, running totals and the annotation event log"""
    principal_amount: Decimal
    interest_rate: Decimal                      # percent, e.g. 10 for 10%
    interest_mode: InterestMode = InterestMode.PER_INSTALLMENT
    payment_type: PaymentType = PaymentType.SINGLE
    installment_count: int = 1
    installment_due_dates: List[date] = field(default_factory=list)
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    stored_total_interest: Optional[Decimal] = None  # overrides the formula when set
    installment_value: Optional[Decimal] = None      # supplied value for daily contracts
    outstanding_balance: Decimal = ZERO
    total_paid: Decimal = ZERO
    annotation: str = ""
    status: ContractStatus = ContractStatus.ACTIVE
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        self.principal_amount = to_decimal(self.principal_amount)
        self.interest_rate = to_decimal(self.interest_rate)
        self.outstanding_balance = to_decimal(self.outstanding_balance)
        self.total_paid = to_decimal(self.total_paid)
        if self.stored_total_interest is not None:
            self.stored_total_interest = to_decimal(self.stored_total_interest)
        if self.installment_value is not None:
            self.installment_value = to_decimal(self.installment_value)
        if self.annotation is None:
            self.annotation = ""

        if self.installment_count < 1:
            raise ValueError("Installment count must be at least 1")
        if self.principal_amount < ZERO or self.interest_rate < ZERO:
            raise ValueError("Principal and interest rate must be non-negative")

    @property
    def is_paid(self) -> bool:
        """Check if the contract has been closed as paid"""
        return self.status == ContractStatus.PAID

    def due_date_for(self, index: int) -> Optional[date]:
        """Due date of installment ``index``, falling back to the contract due date"""
        if 0 <= index < len(self.installment_due_dates):
            return self.installment_due_dates[index]
        return self.due_date

    def to_dict(self) -> Dict[str, Any]:
        """Convert contract to dictionary (Decimal as strings, ISO dates)"""
        return {
            'id': self.id,
            'principal_amount': str(self.principal_amount),
            'interest_rate': str(self.interest_rate),
            'interest_mode': self.interest_mode.value,
            'payment_type': self.payment_type.value,
            'installment_count': self.installment_count,
            'installment_due_dates': [d.isoformat() for d in self.installment_due_dates],
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'stored_total_interest': (
                str(self.stored_total_interest) if self.stored_total_interest is not None else None
            ),
            'installment_value': (
                str(self.installment_value) if self.installment_value is not None else None
            ),
            'outstanding_balance': str(self.outstanding_balance),
            'total_paid': str(self.total_paid),
            'annotation': self.annotation,
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Contract':
        """Create contract from dictionary"""
        def get_date(key: str) -> Optional[date]:
            if data.get(key):
                return date.fromisoformat(data[key])
            return None

        def get_decimal(key: str) -> Optional[Decimal]:
            if data.get(key) is not None:
                return Decimal(str(data[key]))
            return None

        kwargs = dict(
            principal_amount=Decimal(str(data['principal_amount'])),
            interest_rate=Decimal(str(data.get('interest_rate', '0'))),
            interest_mode=InterestMode(data.get('interest_mode', InterestMode.PER_INSTALLMENT.value)),
            payment_type=PaymentType(data.get('payment_type', PaymentType.SINGLE.value)),
            installment_count=int(data.get('installment_count', 1)),
            installment_due_dates=[
                date.fromisoformat(d) for d in data.get('installment_due_dates') or []
            ],
            start_date=get_date('start_date'),
            due_date=get_date('due_date'),
            stored_total_interest=get_decimal('stored_total_interest'),
            installment_value=get_decimal('installment_value'),
            outstanding_balance=get_decimal('outstanding_balance') or ZERO,
            total_paid=get_decimal('total_paid') or ZERO,
            annotation=data.get('annotation') or "",
            status=ContractStatus(data.get('status', ContractStatus.ACTIVE.value)),
        )
        if data.get('id'):
            kwargs['id'] = data['id']
        return cls(**kwargs)
