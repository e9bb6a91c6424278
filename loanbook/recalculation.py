"""
Recalculation Module

Keeps a loan's schedule consistent when its terms are edited.

Changing frequency, duration or issue date rebuilds the schedule (payment
facts carried over by installment number). Changing principal, interest rate
or additional charges only re-splits installment amounts. Either way the
derivation pass runs afterwards.
"""

from datetime import date
from typing import Any, Dict, Optional

from .errors import ValidationError
from .models import (
    Loan, PaymentFrequency, compute_total_amount, parse_date, parse_duration,
    parse_enum, validate_terms
)
from .money import ZERO, parse_amount, to_decimal
from .schedule import build_schedule, reallocate_amounts
from .status import refresh_loan
from .logging_config import get_logger


EDITABLE_FIELDS = (
    "customer_id", "principal", "interest_rate", "payment_frequency", "duration",
    "issue_date", "due_date", "additional_charges", "notes",
)
SCHEDULE_FIELDS = ("payment_frequency", "duration", "issue_date")
AMOUNT_FIELDS = ("principal", "interest_rate", "additional_charges")

logger = get_logger("loanbook.recalculation")


def normalize_changes(changes: Dict[str, Any], notes_max_length: int = 1000) -> Dict[str, Any]:
    """
    Validate and coerce raw edit values

    Raises:
        ValidationError: On unknown fields or malformed values
    """
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}")

    normalized: Dict[str, Any] = {}
    for key, value in changes.items():
        if value is None:
            continue
        if key == "principal":
            normalized[key] = parse_amount(value, "amount")
        elif key == "interest_rate":
            normalized[key] = to_decimal(value, "interest_rate")
        elif key == "additional_charges":
            normalized[key] = parse_amount(value, "additional_charges")
        elif key == "payment_frequency":
            normalized[key] = parse_enum(PaymentFrequency, value, "payment frequency")
        elif key == "duration":
            normalized[key] = parse_duration(value)
        elif key in ("issue_date", "due_date"):
            normalized[key] = parse_date(value, key)
        elif key == "notes":
            notes = str(value).strip()
            if len(notes) > notes_max_length:
                raise ValidationError(f"Notes cannot exceed {notes_max_length} characters")
            normalized[key] = notes
        else:
            normalized[key] = value
    return normalized


def recalculate(loan: Loan, changes: Dict[str, Any], today: date,
                allow_truncation: bool = True, limits: Optional[Dict[str, Any]] = None,
                notes_max_length: int = 1000) -> Loan:
    """
    Apply edited terms to the loan and bring its schedule back in line.

    Everything is validated before the loan is touched, so a rejected edit
    leaves the loan unchanged.

    Args:
        loan: Loan loaded from storage
        changes: Raw field values keyed by EDITABLE_FIELDS names
        today: Date used by the derivation pass
        allow_truncation: Whether shortening the duration may drop paid slots
        limits: Optional min_principal / max_principal / max_interest_rate overrides

    Returns:
        The same loan, updated

    Raises:
        ValidationError: On invalid values or a policy violation
    """
    normalized = normalize_changes(changes, notes_max_length)
    changed = {k for k, v in normalized.items() if getattr(loan, k) != v}

    principal = normalized.get("principal", loan.principal)
    interest_rate = normalized.get("interest_rate", loan.interest_rate)
    additional_charges = normalized.get("additional_charges", loan.additional_charges)
    duration = normalized.get("duration", loan.duration)
    validate_terms(principal, interest_rate, additional_charges, duration, **(limits or {}))

    rebuild = bool(changed & set(SCHEDULE_FIELDS))
    resplit = bool(changed & set(AMOUNT_FIELDS))

    surviving = loan.installments[:duration] if rebuild else loan.installments
    dropped = loan.installments[duration:] if rebuild else []
    if dropped and any(inst.paid_amount > ZERO for inst in dropped):
        if not allow_truncation:
            raise ValidationError(
                f"Cannot reduce duration to {duration}: later installments already hold payments"
            )
        logger.warning(
            "Duration cut to %s drops paid installments on loan %s", duration, loan.id,
            extra={"action": "loan.truncate", "loan_id": loan.id,
                   "extra": {"dropped": [i.installment_number for i in dropped if i.paid_amount > ZERO]}},
        )

    total_amount = compute_total_amount(principal, interest_rate, additional_charges)
    kept_paid = sum((inst.paid_amount for inst in surviving), ZERO)
    if total_amount < kept_paid:
        raise ValidationError(
            f"Total amount {total_amount} cannot be less than the {kept_paid} already paid"
        )

    if "due_date" in normalized:
        # Not independently settable; derived from the last installment below
        logger.debug("Ignoring explicit due_date on loan %s", loan.id)

    for key in ("customer_id", "principal", "interest_rate", "additional_charges",
                "payment_frequency", "duration", "issue_date", "notes"):
        if key in normalized:
            setattr(loan, key, normalized[key])
    loan.total_amount = total_amount

    if rebuild:
        loan.installments = build_schedule(
            total_amount, loan.payment_frequency, loan.duration, loan.issue_date,
            previous=loan.installments
        )
    elif resplit:
        reallocate_amounts(loan.installments, total_amount)

    return refresh_loan(loan, today)
