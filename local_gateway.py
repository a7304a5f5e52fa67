"""Gateway backed by a single JSON document, or by memory when no path is set.

Every mutation reads the whole document, applies the change and writes it
back while holding the store's lock, so the file always mirrors the three
entity shapes the SQL backend returns. Writers for the same path share one
lock across gateway instances; each write goes to its own temp file and is
swapped in with ``os.replace``.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

from gateway import (
    DuplicateCategoryError,
    FinanceGateway,
    GatewayError,
    TransactionNotFound,
    UserExistsError,
    ensure_immutable_fields,
)
from models import new_id
from schemas import (
    BudgetRecord,
    CategoryIn,
    CategoryRecord,
    TransactionIn,
    TransactionRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)

COLLECTIONS = ("users", "transactions", "categories", "budgets")

Document = dict[str, list[dict]]

_store_locks: dict[Path, threading.Lock] = {}
_store_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    with _store_locks_guard:
        return _store_locks.setdefault(path, threading.Lock())


def _empty_document() -> Document:
    return {key: [] for key in COLLECTIONS}


class LocalGateway(FinanceGateway):
    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        current_user: Optional[UserRecord] = None,
    ) -> None:
        super().__init__(current_user)
        self.path = Path(path).resolve() if path else None
        self._memory = _empty_document()
        self._lock = _lock_for(self.path) if self.path else threading.Lock()

    def _load(self) -> Document:
        if self.path is None:
            return copy.deepcopy(self._memory)
        if not self.path.exists():
            return _empty_document()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise GatewayError(f"Local store {self.path} is unreadable") from exc
        if not isinstance(data, dict):
            raise GatewayError(f"Local store {self.path} has an unexpected layout")
        for key in COLLECTIONS:
            data.setdefault(key, [])
        return data

    def _save(self, data: Document) -> None:
        if self.path is None:
            self._memory = data
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f"{self.path.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            json.dump(data, handle, indent=2)
        try:
            os.replace(handle.name, self.path)
        except OSError:
            Path(handle.name).unlink(missing_ok=True)
            raise

    @contextmanager
    def _editing(self) -> Iterator[Document]:
        """Yield the document for changes; it is saved only if the block succeeds."""
        with self._lock:
            doc = self._load()
            yield doc
            self._save(doc)

    def _create_user(self, email: str, password_hash: str) -> UserRecord:
        with self._editing() as doc:
            if any(row["email"] == email for row in doc["users"]):
                raise UserExistsError("User already exists")
            user = UserRecord(id=new_id(), email=email)
            doc["users"].append({**user.model_dump(), "password_hash": password_hash})
        return user

    def _find_user(self, email: str) -> Optional[tuple[UserRecord, str]]:
        for row in self._load()["users"]:
            if row["email"] == email:
                return UserRecord.model_validate(row), row["password_hash"]
        return None

    def list_transactions(self, user_id: str) -> list[TransactionRecord]:
        records = [
            TransactionRecord.model_validate(row)
            for row in self._load()["transactions"]
            if row["user_id"] == user_id
        ]
        records.sort(key=lambda txn: (txn.date, txn.created_at), reverse=True)
        return records

    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        for row in self._load()["transactions"]:
            if row["id"] == transaction_id:
                return TransactionRecord.model_validate(row)
        raise TransactionNotFound("Transaction not found")

    def add_transaction(self, user_id: str, data: TransactionIn) -> TransactionRecord:
        txn = TransactionRecord(
            id=new_id(),
            user_id=user_id,
            created_at=datetime.utcnow(),
            **data.model_dump(),
        )
        with self._editing() as doc:
            doc["transactions"].append(txn.model_dump(mode="json"))
        return txn

    def update_transaction(self, txn: TransactionRecord) -> TransactionRecord:
        with self._editing() as doc:
            rows = doc["transactions"]
            idx = next((i for i, row in enumerate(rows) if row["id"] == txn.id), None)
            if idx is None:
                raise TransactionNotFound("Transaction not found")
            ensure_immutable_fields(TransactionRecord.model_validate(rows[idx]), txn)
            rows[idx] = txn.model_dump(mode="json")
        return txn

    def delete_transaction(self, transaction_id: str) -> None:
        with self._editing() as doc:
            doc["transactions"] = [
                row for row in doc["transactions"] if row["id"] != transaction_id
            ]

    def list_custom_categories(self, user_id: str) -> list[CategoryRecord]:
        records = [
            CategoryRecord.model_validate(row)
            for row in self._load()["categories"]
            if row["user_id"] == user_id and row.get("is_custom", True)
        ]
        records.sort(key=lambda category: category.name)
        return records

    def add_custom_category(self, user_id: str, data: CategoryIn) -> CategoryRecord:
        name = data.name.strip()
        with self._editing() as doc:
            for row in doc["categories"]:
                if row["user_id"] == user_id and row["name"].lower() == name.lower():
                    raise DuplicateCategoryError(
                        "Category with this name already exists"
                    )
            category = CategoryRecord(
                id=new_id(),
                user_id=user_id,
                name=name,
                type=data.type,
                color=data.color,
                is_custom=True,
            )
            doc["categories"].append(category.model_dump(mode="json"))
        return category

    def delete_custom_category(self, category_id: str) -> None:
        with self._editing() as doc:
            doc["categories"] = [
                row for row in doc["categories"] if row["id"] != category_id
            ]

    def list_budgets(self, user_id: str) -> list[BudgetRecord]:
        records = [
            BudgetRecord.model_validate(row)
            for row in self._load()["budgets"]
            if row["user_id"] == user_id
        ]
        records.sort(key=lambda budget: budget.category_name)
        return records

    def upsert_budget(
        self, user_id: str, category_name: str, amount: float
    ) -> BudgetRecord:
        with self._editing() as doc:
            for row in doc["budgets"]:
                if row["user_id"] == user_id and row["category_name"] == category_name:
                    row["amount"] = amount
                    return BudgetRecord.model_validate(row)
            budget = BudgetRecord(
                id=new_id(), user_id=user_id, category_name=category_name, amount=amount
            )
            doc["budgets"].append(budget.model_dump(mode="json"))
        return budget
