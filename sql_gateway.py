from __future__ import annotations

import logging
from datetime import datetime
from functools import wraps
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from gateway import (
    DuplicateCategoryError,
    FinanceGateway,
    SchemaMissingError,
    TransactionNotFound,
    UserExistsError,
    ensure_immutable_fields,
)
from models import Budget, Category, Transaction, User
from schemas import (
    BudgetRecord,
    CategoryIn,
    CategoryRecord,
    TransactionIn,
    TransactionRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)

MISSING_TABLE_MARKERS = (
    "no such table",
    "undefinedtable",
    "does not exist",
    "doesn't exist",
)


def is_missing_table_error(exc: Exception) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    name = type(getattr(exc, "orig", exc)).__name__.lower()
    return any(marker in message or marker in name for marker in MISSING_TABLE_MARKERS)


def _translate_errors(method):
    @wraps(method)
    def wrapper(self: "SqlGateway", *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (OperationalError, ProgrammingError) as exc:
            self.session.rollback()
            if is_missing_table_error(exc):
                logger.error(f"schema_missing: operation={method.__name__}")
                raise SchemaMissingError(
                    "Database tables are missing; run the migrations first"
                ) from exc
            raise

    return wrapper


class SqlGateway(FinanceGateway):
    def __init__(
        self, session: Session, current_user: Optional[UserRecord] = None
    ) -> None:
        super().__init__(current_user)
        self.session = session

    @_translate_errors
    def _create_user(self, email: str, password_hash: str) -> UserRecord:
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise UserExistsError("User already exists")
        user = User(email=email, password_hash=password_hash)
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise UserExistsError("User already exists") from exc
        self.session.refresh(user)
        return UserRecord.model_validate(user)

    @_translate_errors
    def _find_user(self, email: str) -> Optional[tuple[UserRecord, str]]:
        user = self.session.scalar(select(User).where(User.email == email))
        if not user:
            return None
        return UserRecord.model_validate(user), user.password_hash

    @_translate_errors
    def list_transactions(self, user_id: str) -> list[TransactionRecord]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )
        return [
            TransactionRecord.model_validate(txn)
            for txn in self.session.scalars(stmt).all()
        ]

    @_translate_errors
    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return TransactionRecord.model_validate(txn)

    @_translate_errors
    def add_transaction(self, user_id: str, data: TransactionIn) -> TransactionRecord:
        txn = Transaction(
            user_id=user_id,
            type=data.type,
            amount=data.amount,
            category=data.category,
            description=data.description,
            date=data.date,
            created_at=datetime.utcnow(),
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return TransactionRecord.model_validate(txn)

    @_translate_errors
    def update_transaction(self, txn: TransactionRecord) -> TransactionRecord:
        row = self.session.get(Transaction, txn.id)
        if not row:
            raise TransactionNotFound("Transaction not found")
        ensure_immutable_fields(TransactionRecord.model_validate(row), txn)
        row.type = txn.type
        row.amount = txn.amount
        row.category = txn.category
        row.description = txn.description
        row.date = txn.date
        self.session.commit()
        self.session.refresh(row)
        return TransactionRecord.model_validate(row)

    @_translate_errors
    def delete_transaction(self, transaction_id: str) -> None:
        self.session.execute(delete(Transaction).where(Transaction.id == transaction_id))
        self.session.commit()

    @_translate_errors
    def list_custom_categories(self, user_id: str) -> list[CategoryRecord]:
        stmt = (
            select(Category)
            .where(Category.user_id == user_id, Category.is_custom.is_(True))
            .order_by(Category.name)
        )
        return [
            CategoryRecord.model_validate(category)
            for category in self.session.scalars(stmt).all()
        ]

    @_translate_errors
    def add_custom_category(self, user_id: str, data: CategoryIn) -> CategoryRecord:
        name = data.name.strip()
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == user_id,
                func.lower(Category.name) == name.lower(),
            )
        )
        if existing:
            raise DuplicateCategoryError("Category with this name already exists")
        category = Category(
            user_id=user_id,
            name=name,
            type=data.type,
            color=data.color,
            is_custom=True,
        )
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateCategoryError(
                "Category with this name already exists"
            ) from exc
        self.session.refresh(category)
        return CategoryRecord.model_validate(category)

    @_translate_errors
    def delete_custom_category(self, category_id: str) -> None:
        self.session.execute(
            delete(Category).where(
                Category.id == category_id, Category.is_custom.is_(True)
            )
        )
        self.session.commit()

    @_translate_errors
    def list_budgets(self, user_id: str) -> list[BudgetRecord]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == user_id)
            .order_by(Budget.category_name)
        )
        return [
            BudgetRecord.model_validate(budget)
            for budget in self.session.scalars(stmt).all()
        ]

    @_translate_errors
    def upsert_budget(
        self, user_id: str, category_name: str, amount: float
    ) -> BudgetRecord:
        stmt = select(Budget).where(
            Budget.user_id == user_id, Budget.category_name == category_name
        )
        existing = self.session.scalar(stmt)
        if existing:
            existing.amount = amount
            self.session.commit()
            self.session.refresh(existing)
            return BudgetRecord.model_validate(existing)

        budget = Budget(user_id=user_id, category_name=category_name, amount=amount)
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost an insert race; the other row wins and gets our amount.
            self.session.rollback()
            budget = self.session.scalars(stmt).one()
            budget.amount = amount
            self.session.commit()
        self.session.refresh(budget)
        return BudgetRecord.model_validate(budget)
