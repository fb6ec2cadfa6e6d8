"""
Expense label normalisation.

Callers send free-form labels.  "General expense" is not an ExpenseType:
it is the absence of one, stored as ``None``.  Every label entering the
ledger passes through ``normalize_expense_label`` once, at the edge, so the
classification path never compares against magic strings.
"""

from collections.abc import Iterable

from fund_ledger.models.expense_type import expense_type_key


def normalize_expense_label(
    label: str | None,
    general_aliases: Iterable[str] = (),
) -> str | None:
    """
    Return the label to store, or None for a general expense.

    Postconditions:
        - None, blank labels, and labels matching a general alias
          (case-insensitively) return None.
        - Any other label is returned with surrounding whitespace removed.
    """
    if label is None:
        return None
    cleaned = label.strip()
    if not cleaned:
        return None
    key = expense_type_key(cleaned)
    if any(key == expense_type_key(alias) for alias in general_aliases):
        return None
    return cleaned
