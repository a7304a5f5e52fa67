from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from aggregation import (
    BudgetProgress,
    MonthBucket,
    Totals,
    TransactionFilters,
    build_category_breakdown,
    build_monthly_series,
    compute_budget_progress,
    compute_totals,
    filter_transactions,
)
from categories import all_categories, category_names, resolve_color
from csv_utils import export_transactions
from gateway import FinanceGateway, TransactionNotFound
from insights import InsightService
from models import TransactionType
from schemas import (
    BudgetRecord,
    CategoryIn,
    CategoryRecord,
    TransactionIn,
    TransactionRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategorySlice:
    name: str
    total: float
    color: str


@dataclass(frozen=True)
class DashboardView:
    totals: Totals
    breakdown: list[CategorySlice]
    series: list[MonthBucket]
    budgets: list[BudgetProgress]


class TrackerService:
    """Per-user state of the app: the three entity lists and what derives from them.

    Every mutation goes through the gateway and is followed by a full reload
    of the affected list; nothing is patched locally.
    """

    def __init__(self, gateway: FinanceGateway, user: UserRecord) -> None:
        self.gateway = gateway
        self.user = user
        self.transactions: list[TransactionRecord] = []
        self.custom_categories: list[CategoryRecord] = []
        self.budgets: list[BudgetRecord] = []

    def reload(self) -> None:
        self.reload_transactions()
        self.reload_categories()
        self.reload_budgets()

    def reload_transactions(self) -> None:
        self.transactions = self.gateway.list_transactions(self.user.id)

    def reload_categories(self) -> None:
        self.custom_categories = self.gateway.list_custom_categories(self.user.id)

    def reload_budgets(self) -> None:
        self.budgets = self.gateway.list_budgets(self.user.id)

    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        txn = self.gateway.get_transaction(transaction_id)
        if txn.user_id != self.user.id:
            raise TransactionNotFound("Transaction not found")
        return txn

    def save_transaction(
        self, data: TransactionIn, transaction_id: Optional[str] = None
    ) -> TransactionRecord:
        if transaction_id is None:
            saved = self.gateway.add_transaction(self.user.id, data)
        else:
            stored = self.get_transaction(transaction_id)
            saved = self.gateway.update_transaction(
                stored.model_copy(update=data.model_dump())
            )
        self.reload_transactions()
        return saved

    def delete_transaction(self, transaction_id: str) -> None:
        try:
            self.get_transaction(transaction_id)
        except TransactionNotFound:
            logger.info(f"delete_transaction: already gone id={transaction_id}")
        else:
            self.gateway.delete_transaction(transaction_id)
        self.reload_transactions()

    def add_category(self, data: CategoryIn) -> CategoryRecord:
        category = self.gateway.add_custom_category(self.user.id, data)
        self.reload_categories()
        return category

    def delete_category(self, category_id: str) -> None:
        owned = self.gateway.list_custom_categories(self.user.id)
        if any(category.id == category_id for category in owned):
            self.gateway.delete_custom_category(category_id)
        self.reload_categories()

    def set_budget(self, category_name: str, amount: float) -> BudgetRecord:
        budget = self.gateway.upsert_budget(self.user.id, category_name, amount)
        self.reload_budgets()
        return budget

    def categories(self) -> list[CategoryRecord]:
        return all_categories(self.custom_categories)

    def budget_candidates(self) -> list[str]:
        return category_names(self.custom_categories, TransactionType.expense)

    def dashboard(self, now: date) -> DashboardView:
        totals = compute_totals(self.transactions, now)
        breakdown = [
            CategorySlice(
                name=name,
                total=total,
                color=resolve_color(name, self.custom_categories),
            )
            for name, total in build_category_breakdown(totals.category_totals)
        ]
        return DashboardView(
            totals=totals,
            breakdown=breakdown,
            series=build_monthly_series(self.transactions, now),
            budgets=compute_budget_progress(
                self.budgets, totals.monthly_category_totals
            ),
        )

    def visible_transactions(
        self, filters: Optional[TransactionFilters] = None
    ) -> list[TransactionRecord]:
        return filter_transactions(self.transactions, filters or TransactionFilters())

    def export_csv(self, filters: Optional[TransactionFilters] = None) -> str:
        return export_transactions(self.visible_transactions(filters))

    def insight(self, service: Optional[InsightService] = None) -> str:
        service = service or InsightService()
        return service.request_insight(self.transactions)
