"""Persistence contract shared by the SQL and local-store backends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import bcrypt

from schemas import (
    BudgetRecord,
    CategoryIn,
    CategoryRecord,
    TransactionIn,
    TransactionRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    pass


class SchemaMissingError(GatewayError):
    """The backing store has not been provisioned with the expected tables."""


class DuplicateCategoryError(GatewayError, ValueError):
    pass


class AuthError(GatewayError):
    pass


class UserExistsError(AuthError):
    pass


class TransactionNotFound(GatewayError, ValueError):
    pass


class ImmutableFieldError(GatewayError, ValueError):
    pass


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8")[:72], bcrypt.gensalt()).decode(
        "utf-8"
    )


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8")[:72], password_hash.encode("utf-8"))


def ensure_immutable_fields(
    stored: TransactionRecord, incoming: TransactionRecord
) -> None:
    if stored.user_id != incoming.user_id:
        raise ImmutableFieldError("Transaction owner cannot be changed")
    if stored.created_at != incoming.created_at:
        raise ImmutableFieldError("Transaction creation time cannot be changed")


class FinanceGateway(ABC):
    """CRUD for transactions, custom categories and budgets, plus auth.

    Implementations hold the signed-in user for the lifetime of the
    instance; the web layer restores it from the session cookie.
    """

    def __init__(self, current_user: Optional[UserRecord] = None) -> None:
        self._current_user = current_user

    # Auth

    def sign_up(self, email: str, password: str) -> UserRecord:
        clean_email = normalize_email(email)
        if not clean_email or not password:
            raise AuthError("Email and password are required")
        user = self._create_user(clean_email, hash_password(password))
        logger.info(f"sign_up: user_id={user.id}")
        self._current_user = user
        return user

    def sign_in(self, email: str, password: str) -> UserRecord:
        found = self._find_user(normalize_email(email))
        if found is None or not check_password(password, found[1]):
            raise AuthError("Invalid credentials")
        user = found[0]
        logger.info(f"sign_in: user_id={user.id}")
        self._current_user = user
        return user

    def sign_out(self) -> None:
        self._current_user = None

    def get_current_user(self) -> Optional[UserRecord]:
        return self._current_user

    @abstractmethod
    def _create_user(self, email: str, password_hash: str) -> UserRecord:
        """Store a new user; raise UserExistsError if the email is taken."""

    @abstractmethod
    def _find_user(self, email: str) -> Optional[tuple[UserRecord, str]]:
        """Return the user and its password hash, or None."""

    # Transactions

    @abstractmethod
    def list_transactions(self, user_id: str) -> list[TransactionRecord]: ...

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> TransactionRecord: ...

    @abstractmethod
    def add_transaction(self, user_id: str, data: TransactionIn) -> TransactionRecord: ...

    @abstractmethod
    def update_transaction(self, txn: TransactionRecord) -> TransactionRecord: ...

    @abstractmethod
    def delete_transaction(self, transaction_id: str) -> None: ...

    # Categories

    @abstractmethod
    def list_custom_categories(self, user_id: str) -> list[CategoryRecord]: ...

    @abstractmethod
    def add_custom_category(self, user_id: str, data: CategoryIn) -> CategoryRecord: ...

    @abstractmethod
    def delete_custom_category(self, category_id: str) -> None: ...

    # Budgets

    @abstractmethod
    def list_budgets(self, user_id: str) -> list[BudgetRecord]: ...

    @abstractmethod
    def upsert_budget(
        self, user_id: str, category_name: str, amount: float
    ) -> BudgetRecord: ...
