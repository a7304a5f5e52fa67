import csv
from datetime import date
from io import StringIO
from typing import Sequence

from aggregation import TransactionLike

EXPORT_HEADER = ["Date", "Description", "Category", "Type", "Amount"]

# Leading characters a spreadsheet would evaluate as a formula.
FORMULA_TRIGGERS = ("=", "+", "-", "@", "\t", "\r")


def guard_formula(value: str) -> str:
    """Prefix a tab when the cell would start a formula; text is otherwise untouched."""
    if value.lstrip(" ").startswith(FORMULA_TRIGGERS):
        return "\t" + value
    return value


def export_filename(today: date) -> str:
    return f"finance_export_{today.isoformat()}.csv"


def export_transactions(transactions: Sequence[TransactionLike]) -> str:
    # QUOTE_ALL wraps every field and doubles embedded quotes.
    output = StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                txn.date.isoformat(),
                guard_formula(txn.description or ""),
                guard_formula(txn.category),
                txn.type.value.upper(),
                f"{txn.amount:.2f}",
            ]
        )
    return output.getvalue()
