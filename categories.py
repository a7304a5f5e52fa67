"""Built-in category table and color lookup.

Built-in categories are shared by every user and never stored; custom
categories come from the gateway and are passed in explicitly.
"""

from typing import Optional, Sequence

from models import TransactionType
from schemas import CategoryRecord

FALLBACK_COLOR = "#64748b"


def _builtin(
    slug: str, name: str, type_: TransactionType, color: str
) -> CategoryRecord:
    return CategoryRecord(
        id=f"cat_{slug}",
        user_id=None,
        name=name,
        type=type_,
        color=color,
        is_custom=False,
    )


BUILTIN_CATEGORIES: tuple[CategoryRecord, ...] = (
    _builtin("salary", "Salary", TransactionType.income, "#10b981"),
    _builtin("freelance", "Freelance", TransactionType.income, "#3b82f6"),
    _builtin("food", "Food", TransactionType.expense, "#f59e0b"),
    _builtin("transport", "Transport", TransactionType.expense, "#6366f1"),
    _builtin("bills", "Bills", TransactionType.expense, "#ef4444"),
    _builtin("entertainment", "Entertainment", TransactionType.expense, "#ec4899"),
    _builtin("healthcare", "Healthcare", TransactionType.expense, "#14b8a6"),
    _builtin("shopping", "Shopping", TransactionType.expense, "#8b5cf6"),
    _builtin("other_in", "Other Income", TransactionType.income, FALLBACK_COLOR),
    _builtin("other_ex", "Other Expense", TransactionType.expense, FALLBACK_COLOR),
)


def all_categories(
    custom_categories: Sequence[CategoryRecord] = (),
) -> list[CategoryRecord]:
    return [*BUILTIN_CATEGORIES, *custom_categories]


def resolve_category(
    name: str, custom_categories: Sequence[CategoryRecord] = ()
) -> Optional[CategoryRecord]:
    for category in all_categories(custom_categories):
        if category.name == name:
            return category
    return None


def resolve_color(name: str, custom_categories: Sequence[CategoryRecord] = ()) -> str:
    """Return the display color for ``name``; unknown names get the fallback."""
    category = resolve_category(name, custom_categories)
    return category.color if category else FALLBACK_COLOR


def category_names(
    custom_categories: Sequence[CategoryRecord] = (),
    type_: Optional[TransactionType] = None,
) -> list[str]:
    seen: set[str] = set()
    names: list[str] = []
    for category in all_categories(custom_categories):
        if type_ is not None and category.type != type_:
            continue
        if category.name in seen:
            continue
        seen.add(category.name)
        names.append(category.name)
    return names
