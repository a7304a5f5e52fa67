from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from categories import FALLBACK_COLOR, resolve_color
from database import Base
from gateway import (
    AuthError,
    DuplicateCategoryError,
    ImmutableFieldError,
    SchemaMissingError,
    TransactionNotFound,
    UserExistsError,
)
from local_gateway import LocalGateway
from models import Budget, TransactionType
from schemas import CategoryIn, TransactionIn
from sql_gateway import SqlGateway


def make_sql_gateway() -> SqlGateway:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return SqlGateway(Session(engine))


@pytest.fixture(params=["sql", "local_file", "local_memory"])
def gateway(request, tmp_path):
    if request.param == "sql":
        gw = make_sql_gateway()
        yield gw
        gw.session.close()
    elif request.param == "local_file":
        yield LocalGateway(tmp_path / "store.json")
    else:
        yield LocalGateway()


def expense(amount: float, category: str, on: date, description: str = "") -> TransactionIn:
    return TransactionIn(
        type=TransactionType.expense,
        amount=amount,
        category=category,
        description=description,
        date=on,
    )


def test_add_and_list_transactions_newest_first(gateway) -> None:
    first = gateway.add_transaction("u1", expense(10, "Food", date(2026, 9, 1)))
    second = gateway.add_transaction("u1", expense(20, "Bills", date(2026, 10, 1)))
    gateway.add_transaction("u2", expense(99, "Food", date(2026, 10, 2)))

    listed = gateway.list_transactions("u1")

    assert [t.id for t in listed] == [second.id, first.id]
    assert first.id != second.id
    assert first.user_id == "u1"
    assert first.created_at is not None
    assert listed[1].model_dump() == first.model_dump()


def test_update_transaction_keeps_identity_fields(gateway) -> None:
    created = gateway.add_transaction("u1", expense(10, "Food", date(2026, 9, 1)))

    updated = gateway.update_transaction(
        created.model_copy(update={"amount": 15.5, "description": "Groceries"})
    )

    assert updated.id == created.id
    assert updated.created_at == created.created_at
    assert gateway.get_transaction(created.id).amount == 15.5
    assert gateway.list_transactions("u1")[0].description == "Groceries"


def test_update_transaction_rejects_changed_owner_or_timestamp(gateway) -> None:
    created = gateway.add_transaction("u1", expense(10, "Food", date(2026, 9, 1)))

    with pytest.raises(ImmutableFieldError):
        gateway.update_transaction(created.model_copy(update={"user_id": "u2"}))
    with pytest.raises(ImmutableFieldError):
        gateway.update_transaction(
            created.model_copy(
                update={"created_at": created.created_at.replace(year=2000)}
            )
        )
    assert gateway.get_transaction(created.id).user_id == "u1"


def test_update_unknown_transaction_raises_not_found(gateway) -> None:
    created = gateway.add_transaction("u1", expense(10, "Food", date(2026, 9, 1)))
    gateway.delete_transaction(created.id)

    with pytest.raises(TransactionNotFound):
        gateway.update_transaction(created)
    with pytest.raises(TransactionNotFound):
        gateway.get_transaction(created.id)


def test_delete_transaction_is_idempotent(gateway) -> None:
    created = gateway.add_transaction("u1", expense(10, "Food", date(2026, 9, 1)))

    gateway.delete_transaction(created.id)
    gateway.delete_transaction(created.id)
    gateway.delete_transaction("does-not-exist")

    assert gateway.list_transactions("u1") == []


def test_custom_categories_are_scoped_and_flagged(gateway) -> None:
    pets = gateway.add_custom_category(
        "u1", CategoryIn(name="Pets", type=TransactionType.expense, color="#123456")
    )
    gateway.add_custom_category(
        "u2", CategoryIn(name="Pets", type=TransactionType.expense, color="#654321")
    )

    listed = gateway.list_custom_categories("u1")

    assert [c.id for c in listed] == [pets.id]
    assert pets.is_custom is True
    assert pets.user_id == "u1"
    assert pets.color == "#123456"


def test_duplicate_custom_category_is_a_conflict(gateway) -> None:
    gateway.add_custom_category(
        "u1", CategoryIn(name="Pets", type=TransactionType.expense)
    )

    with pytest.raises(DuplicateCategoryError):
        gateway.add_custom_category(
            "u1", CategoryIn(name="pets", type=TransactionType.income)
        )
    assert len(gateway.list_custom_categories("u1")) == 1


def test_deleting_category_leaves_transactions_untouched(gateway) -> None:
    food = gateway.add_custom_category(
        "u1", CategoryIn(name="Street Food", type=TransactionType.expense, color="#abcdef")
    )
    txn = gateway.add_transaction("u1", expense(7, "Street Food", date(2026, 10, 1)))

    gateway.delete_custom_category(food.id)
    gateway.delete_custom_category(food.id)

    customs = gateway.list_custom_categories("u1")
    assert customs == []
    remaining = gateway.list_transactions("u1")
    assert [t.id for t in remaining] == [txn.id]
    assert remaining[0].category == "Street Food"
    assert resolve_color(remaining[0].category, customs) == FALLBACK_COLOR


def test_upsert_budget_inserts_once_then_updates(gateway) -> None:
    first = gateway.upsert_budget("u1", "Food", 300)
    second = gateway.upsert_budget("u1", "Food", 450)
    gateway.upsert_budget("u2", "Food", 10)

    budgets = gateway.list_budgets("u1")

    assert len(budgets) == 1
    assert budgets[0].id == first.id == second.id
    assert budgets[0].amount == 450


def test_sign_up_sign_in_and_sign_out(gateway) -> None:
    user = gateway.sign_up("Alice@Example.com ", "s3cret")

    assert user.email == "alice@example.com"
    assert gateway.get_current_user() == user

    gateway.sign_out()
    assert gateway.get_current_user() is None

    again = gateway.sign_in("alice@example.com", "s3cret")
    assert again == user
    assert gateway.get_current_user() == user


def test_auth_failures(gateway) -> None:
    gateway.sign_up("bob@example.com", "pw")

    with pytest.raises(UserExistsError):
        gateway.sign_up("bob@example.com", "other")
    with pytest.raises(AuthError):
        gateway.sign_in("bob@example.com", "wrong")
    with pytest.raises(AuthError):
        gateway.sign_in("nobody@example.com", "pw")


def test_sql_budget_upsert_keeps_a_single_row() -> None:
    gw = make_sql_gateway()

    gw.upsert_budget("u1", "Food", 100)
    gw.upsert_budget("u1", "Food", 200)

    count = gw.session.scalar(
        select(func.count(Budget.id)).where(Budget.user_id == "u1")
    )
    assert count == 1


def test_sql_gateway_reports_missing_schema() -> None:
    engine = create_engine("sqlite:///:memory:")
    gw = SqlGateway(Session(engine))

    with pytest.raises(SchemaMissingError):
        gw.list_transactions("u1")
    with pytest.raises(SchemaMissingError):
        gw.upsert_budget("u1", "Food", 10)


def test_local_store_file_mirrors_entity_shapes(tmp_path) -> None:
    path = tmp_path / "nested" / "store.json"
    writer = LocalGateway(path)
    txn = writer.add_transaction("u1", expense(10, "Food", date(2026, 9, 1)))
    writer.upsert_budget("u1", "Food", 50)

    reader = LocalGateway(path)

    assert reader.list_transactions("u1") == [txn]
    assert reader.list_budgets("u1")[0].category_name == "Food"
    sql = make_sql_gateway()
    sql_txn = sql.add_transaction("u1", expense(10, "Food", date(2026, 9, 1)))
    assert set(sql_txn.model_dump()) == set(txn.model_dump())


def test_local_store_keeps_every_concurrent_insert(tmp_path) -> None:
    path = tmp_path / "store.json"

    def add(n: int) -> str:
        # A fresh gateway per call, as each web request gets one.
        gw = LocalGateway(path)
        return gw.add_transaction("u1", expense(n, "Food", date(2026, 9, 1))).id

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(add, range(120)))

    stored = LocalGateway(path).list_transactions("u1")
    assert len(stored) == 120
    assert {txn.id for txn in stored} == set(ids)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["store.json"]


def test_local_store_concurrent_budget_upserts_keep_one_row(tmp_path) -> None:
    path = tmp_path / "store.json"

    def upsert(n: int) -> None:
        LocalGateway(path).upsert_budget("u1", f"Cat{n % 4}", n)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(upsert, range(40)))

    budgets = LocalGateway(path).list_budgets("u1")
    assert [b.category_name for b in budgets] == ["Cat0", "Cat1", "Cat2", "Cat3"]


def test_local_store_failed_change_is_not_written(tmp_path) -> None:
    path = tmp_path / "store.json"
    gw = LocalGateway(path)
    gw.add_custom_category("u1", CategoryIn(name="Pets", type=TransactionType.expense))
    before = path.read_text(encoding="utf-8")

    with pytest.raises(DuplicateCategoryError):
        gw.add_custom_category("u1", CategoryIn(name="pets", type=TransactionType.expense))

    assert path.read_text(encoding="utf-8") == before
