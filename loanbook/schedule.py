"""
Installment Schedule Module

Splits a loan's total amount into a fixed sequence of installments.

Every slot gets ceil(total / duration) rounded up to a whole currency unit so
the lender never under-collects; the last slot absorbs the rounding and gets
total - base * (duration - 1), never less than zero. Due dates advance from
the issue date by i days, 7*i days or i calendar months (clamped to month end).
"""

from decimal import Decimal
from datetime import date, timedelta
from typing import Dict, List, Optional
import calendar

from .models import Installment, InstallmentStatus, PaymentFrequency, compute_total_amount
from .money import ZERO, ceil_units, quantize_cents


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date_for(issue_date: date, frequency: PaymentFrequency, installment_number: int) -> date:
    """Due date of installment_number (1-based) counted from the issue date"""
    if frequency == PaymentFrequency.DAILY:
        return issue_date + timedelta(days=installment_number)
    elif frequency == PaymentFrequency.WEEKLY:
        return issue_date + timedelta(days=7 * installment_number)
    elif frequency == PaymentFrequency.MONTHLY:
        # Always offset from the issue date so Jan 31 gives Feb 28, Mar 31, ...
        return add_months(issue_date, installment_number)
    else:
        raise ValueError(f"Unsupported payment frequency: {frequency}")


def base_installment_amount(total_amount: Decimal, count: int) -> Decimal:
    """ceil(total / count) in whole units, never negative"""
    if count < 1:
        raise ValueError("Installment count must be at least 1")
    return max(ZERO, ceil_units(total_amount / Decimal(count)))


def split_amounts(total_amount: Decimal, count: int) -> List[Decimal]:
    """
    Ceiling base for every slot, remainder on the last.

    When the total is too small for count whole-unit slots (5.00 over 10
    installments) the base runs out early; later slots get what is left,
    down to zero, so the amounts still add up to the total.
    """
    base = base_installment_amount(total_amount, count)
    amounts = []
    remaining = quantize_cents(total_amount)
    for _ in range(count - 1):
        amount = min(base, max(ZERO, remaining))
        amounts.append(amount)
        remaining -= amount
    amounts.append(max(ZERO, remaining))
    return amounts


def allocate_amounts(total_amount: Decimal, count: int,
                     paid_amounts: Optional[Dict[int, Decimal]] = None) -> List[Decimal]:
    """
    Split total_amount over count slots while respecting money already paid.

    A slot whose paid amount already reaches its share is locked at that paid
    amount and the rest of the total is re-split over the remaining slots,
    repeating until no further slot locks. Without payments this is exactly
    split_amounts().

    Args:
        total_amount: Amount the schedule must add up to
        count: Number of installments
        paid_amounts: installment_number -> amount already paid

    Returns:
        Installment amounts ordered by installment number
    """
    paid_amounts = paid_amounts or {}
    locked: Dict[int, Decimal] = {}

    while True:
        free = [n for n in range(1, count + 1) if n not in locked]
        if not free:
            shares = {}
            break
        remaining = total_amount - sum(locked.values(), ZERO)
        shares = dict(zip(free, split_amounts(remaining, len(free))))
        newly_locked = [
            n for n in free
            if paid_amounts.get(n, ZERO) > ZERO and paid_amounts[n] >= shares[n]
        ]
        if not newly_locked:
            break
        for n in newly_locked:
            locked[n] = paid_amounts[n]

    amounts = dict(shares)
    amounts.update(locked)
    return [amounts[n] for n in range(1, count + 1)]


def build_schedule(total_amount: Decimal, frequency: PaymentFrequency, duration: int,
                   issue_date: date, previous: Optional[List[Installment]] = None) -> List[Installment]:
    """
    Build a fresh schedule, carrying payment facts over from a previous one.

    Slots numbered up to min(old, new duration) keep paid_amount, paid_date,
    status and notes; due dates and amounts are recomputed. Slots past the old
    duration start pending with nothing paid.
    """
    carried = {
        inst.installment_number: inst
        for inst in (previous or [])
        if inst.installment_number <= duration
    }
    amounts = allocate_amounts(
        total_amount, duration,
        {n: inst.paid_amount for n, inst in carried.items()}
    )

    installments = []
    for number in range(1, duration + 1):
        old = carried.get(number)
        installments.append(Installment(
            installment_number=number,
            installment_amount=amounts[number - 1],
            due_date=due_date_for(issue_date, frequency, number),
            paid_amount=old.paid_amount if old else ZERO,
            paid_date=old.paid_date if old else None,
            status=old.status if old else InstallmentStatus.PENDING,
            notes=old.notes if old else "",
        ))
    return installments


def generate_installments(principal: Decimal, interest_rate: Decimal, additional_charges: Decimal,
                          frequency: PaymentFrequency, duration: int,
                          issue_date: date) -> List[Installment]:
    """Generate the initial schedule for a new loan (pure function of its terms)"""
    total_amount = compute_total_amount(principal, interest_rate, additional_charges)
    return build_schedule(total_amount, frequency, duration, issue_date)


def reallocate_amounts(installments: List[Installment], total_amount: Decimal) -> None:
    """Recompute installment_amount in place; due dates and payments untouched"""
    amounts = allocate_amounts(
        total_amount, len(installments),
        {inst.installment_number: inst.paid_amount for inst in installments}
    )
    for installment, amount in zip(installments, amounts):
        installment.installment_amount = amount
