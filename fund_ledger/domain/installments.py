"""
Installment arithmetic for deferred payments -- pure functions, no I/O.

Status is a function of the amounts alone:

    paid == 0            -> PENDING
    0 < paid < total     -> PARTIAL
    paid >= total        -> COMPLETED
"""

from fund_ledger.exceptions import InvalidAmountError, OverpaymentError
from fund_ledger.models.deferred_payment import DeferredPaymentStatus


def derive_status(total_amount: int, paid_amount: int) -> DeferredPaymentStatus:
    if paid_amount >= total_amount:
        return DeferredPaymentStatus.COMPLETED
    if paid_amount > 0:
        return DeferredPaymentStatus.PARTIAL
    return DeferredPaymentStatus.PENDING


def validate_amount(amount) -> int:
    """Reject anything but a positive integer (bool is not an amount)."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


def apply_installment(
    deferred_payment_id: int,
    total_amount: int,
    paid_amount: int,
    amount: int,
) -> tuple[int, DeferredPaymentStatus]:
    """
    Compute the paid amount and status after an installment.

    Raises:
        InvalidAmountError: amount is not a positive integer.
        OverpaymentError: paid_amount + amount would exceed total_amount.
    """
    validate_amount(amount)
    new_paid = paid_amount + amount
    if new_paid > total_amount:
        raise OverpaymentError(deferred_payment_id, total_amount, paid_amount, amount)
    return new_paid, derive_status(total_amount, new_paid)


def revert_installment(
    total_amount: int,
    paid_amount: int,
    amount: int,
) -> tuple[int, DeferredPaymentStatus]:
    """Undo a settlement whose transaction was deleted; floors at zero."""
    new_paid = max(0, paid_amount - amount)
    return new_paid, derive_status(total_amount, new_paid)
