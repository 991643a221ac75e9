import logging
import sqlite3
from decimal import Decimal

import pytest
import pytest_asyncio

from common.errors import ConcurrencyConflict, ConflictKind, ConstraintViolation, PreconditionError
from dal.record_mutator import DELETE_REFERENCED_MESSAGE, SAVE_REFERENCE_MESSAGE, RecordMutator
from dal.sqlite import SqliteQueryTargetDatabase, SqliteSchemaIntrospector
from schema.cells import Cell


@pytest_asyncio.fixture
async def shop(shop_db_path):
    database = SqliteQueryTargetDatabase(shop_db_path)
    await database.init()
    catalog = await SqliteSchemaIntrospector(database).discover()
    yield database, catalog
    await database.close()


def _mutator(shop, table_name):
    database, catalog = shop
    return RecordMutator(database, catalog.table("main", table_name))


async def _scalar(shop, sql, params=None):
    database, _ = shop
    async with database.get_connection() as conn:
        return await conn.fetchval(sql, params)


@pytest.mark.asyncio
async def test_insert_returns_identity_value(shop):
    """Identity tables return the generated key."""
    new_id = await _mutator(shop, "Customers").insert({"Name": "Barbara", "City": "Boston"})

    assert new_id == 4
    assert await _scalar(shop, "SELECT Name FROM Customers WHERE CustomerId = 4") == "Barbara"


@pytest.mark.asyncio
async def test_insert_ignores_non_writable_columns(shop):
    """Identity and token values supplied by the caller are not written."""
    new_id = await _mutator(shop, "Orders").insert(
        {
            "OrderId": 500,
            "customerid": Cell.of(2),
            "Amount": Decimal("5.25"),
            "Notes": "new",
            "RowVersion": 99,
        }
    )

    assert new_id == 24
    assert await _scalar(shop, "SELECT RowVersion FROM Orders WHERE OrderId = 24") == 1


@pytest.mark.asyncio
async def test_insert_without_identity_returns_affected_count(shop):
    """Tables without identity report the affected row count."""
    affected = await _mutator(shop, "Tags").insert({"Code": "blue", "Lang": "fr", "Label": "Bleu"})

    assert affected == 1


@pytest.mark.asyncio
async def test_insert_with_no_supplied_values_raises(shop):
    """At least one insertable value is required."""
    with pytest.raises(PreconditionError):
        await _mutator(shop, "Customers").insert({"Unknown": 1})


@pytest.mark.asyncio
async def test_insert_into_table_without_insertable_columns_is_noop(shop, caplog):
    """A table whose only column is the identity inserts nothing."""
    with caplog.at_level(logging.INFO):
        result = await _mutator(shop, "Counters").insert({})

    assert result == 0
    assert await _scalar(shop, "SELECT COUNT(*) FROM Counters") == 0
    assert "no insertable columns" in caplog.text


@pytest.mark.asyncio
async def test_insert_with_missing_reference_raises_constraint_violation(shop):
    """Referencing a missing parent is reported with a user-facing message."""
    with pytest.raises(ConstraintViolation) as exc_info:
        await _mutator(shop, "Orders").insert({"CustomerId": 99, "Notes": "orphan"})

    assert exc_info.value.message == SAVE_REFERENCE_MESSAGE
    assert exc_info.value.operation == "insert"


@pytest.mark.asyncio
async def test_update_with_current_token_succeeds_and_bumps_version(shop):
    """A matching token updates the row; the trigger advances the version."""
    mutator = _mutator(shop, "Orders")

    affected = await mutator.update({"Notes": "changed"}, {"OrderId": 3}, original_token=1)

    assert affected == 1
    assert await _scalar(shop, "SELECT Notes FROM Orders WHERE OrderId = 3") == "changed"
    assert await _scalar(shop, "SELECT RowVersion FROM Orders WHERE OrderId = 3") == 2


@pytest.mark.asyncio
async def test_update_with_stale_token_raises_modified(shop):
    """A second writer holding the old version loses with MODIFIED."""
    mutator = _mutator(shop, "Orders")
    await mutator.update({"Notes": "first"}, {"OrderId": 3}, original_token=1)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        await mutator.update({"Notes": "second"}, {"OrderId": 3}, original_token=1)

    assert exc_info.value.kind is ConflictKind.MODIFIED
    assert await _scalar(shop, "SELECT Notes FROM Orders WHERE OrderId = 3") == "first"


@pytest.mark.asyncio
async def test_update_of_deleted_row_raises_deleted(shop):
    """Updating a row someone else removed reports DELETED."""
    mutator = _mutator(shop, "Orders")
    await mutator.delete({"OrderId": 5}, original_token=1)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        await mutator.update({"Notes": "late"}, {"OrderId": 5}, original_token=1)

    assert exc_info.value.kind is ConflictKind.DELETED
    assert exc_info.value.to_metadata()["conflict_kind"] == "deleted"


@pytest.mark.asyncio
async def test_update_without_original_token_skips_check(shop, caplog):
    """No original token means last writer wins, with a warning."""
    with caplog.at_level(logging.WARNING):
        affected = await _mutator(shop, "Orders").update({"Notes": "x"}, {"OrderId": 2})

    assert affected == 1
    assert "skipping concurrency check" in caplog.text


@pytest.mark.asyncio
async def test_update_never_writes_primary_key(shop):
    """Key columns are matched by original value and never assigned."""
    affected = await _mutator(shop, "Customers").update(
        {"CustomerId": 42, "City": "Paris"}, {"CustomerId": 1}
    )

    assert affected == 1
    assert await _scalar(shop, "SELECT City FROM Customers WHERE CustomerId = 1") == "Paris"
    assert await _scalar(shop, "SELECT COUNT(*) FROM Customers WHERE CustomerId = 42") == 0


@pytest.mark.asyncio
async def test_update_with_nothing_to_change_returns_zero(shop):
    """Only key or read-only values means no statement is issued."""
    mutator = _mutator(shop, "Orders")
    assert await mutator.update({"OrderId": 1, "RowVersion": 7}, {"OrderId": 1}) == 0


@pytest.mark.asyncio
async def test_update_requires_primary_key(shop):
    """Keyless tables cannot be updated."""
    with pytest.raises(PreconditionError, match="no primary key"):
        await _mutator(shop, "AuditLog").update({"Message": "x"}, {"Message": "created"})


@pytest.mark.asyncio
async def test_update_requires_every_key_value(shop):
    """Composite keys need all of their values."""
    with pytest.raises(PreconditionError, match="Lang"):
        await _mutator(shop, "Tags").update({"Label": "x"}, {"Code": "red"})


@pytest.mark.asyncio
async def test_update_with_missing_reference_raises_constraint_violation(shop):
    """Pointing an order at a missing customer is rejected."""
    with pytest.raises(ConstraintViolation):
        await _mutator(shop, "Orders").update({"CustomerId": 99}, {"OrderId": 1})


@pytest.mark.asyncio
async def test_delete_referenced_parent_raises_constraint_violation(shop):
    """Deleting a customer with orders is blocked."""
    with pytest.raises(ConstraintViolation) as exc_info:
        await _mutator(shop, "Customers").delete({"CustomerId": 1})

    assert exc_info.value.message == DELETE_REFERENCED_MESSAGE
    assert await _scalar(shop, "SELECT COUNT(*) FROM Customers WHERE CustomerId = 1") == 1


@pytest.mark.asyncio
async def test_delete_with_stale_token_raises_modified(shop):
    """A delete based on an outdated version is refused."""
    mutator = _mutator(shop, "Orders")
    await mutator.update({"Notes": "bumped"}, {"OrderId": 7}, original_token=1)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        await mutator.delete({"OrderId": 7}, original_token=1)

    assert exc_info.value.kind is ConflictKind.MODIFIED


@pytest.mark.asyncio
async def test_delete_of_already_deleted_row_returns_zero(shop):
    """Deleting a row that is already gone is not an error."""
    mutator = _mutator(shop, "Orders")

    assert await mutator.delete({"OrderId": 8}, original_token=1) == 1
    assert await mutator.delete({"OrderId": 8}, original_token=1) == 0


@pytest.mark.asyncio
async def test_delete_by_composite_key(shop):
    """Every key column participates in the predicate."""
    affected = await _mutator(shop, "Tags").delete({"code": "red", "LANG": "fr"})

    assert affected == 1
    assert await _scalar(shop, "SELECT COUNT(*) FROM Tags WHERE Code = 'red'") == 1


@pytest.mark.asyncio
async def test_check_exists(shop):
    """Existence is checked by key; incomplete keys count as absent."""
    mutator = _mutator(shop, "Tags")

    assert await mutator.check_exists({"Code": "red", "Lang": "en"}) is True
    assert await mutator.check_exists({"Code": "red", "Lang": "de"}) is False
    assert await mutator.check_exists({"Code": "red"}) is False
    assert await _mutator(shop, "AuditLog").check_exists({"Message": "created"}) is False


@pytest.mark.asyncio
async def test_delete_of_missing_row_without_token_returns_zero(shop, caplog):
    """Tables without a token treat a vanished row as already deleted."""
    mutator = _mutator(shop, "Tags")

    with caplog.at_level(logging.INFO):
        assert await mutator.delete({"Code": "green", "Lang": "en"}) == 0

    assert "row already gone" in caplog.text


@pytest.mark.asyncio
async def test_update_without_token_affecting_no_rows_is_tolerated(shop, caplog):
    """An existing row that the statement left untouched is not a conflict."""
    database, _ = shop
    async with database.get_connection() as conn:
        await conn.execute(
            "CREATE TRIGGER Tags_frozen BEFORE UPDATE ON Tags WHEN OLD.Code = 'blue' "
            "BEGIN SELECT RAISE(IGNORE); END"
        )
    mutator = _mutator(shop, "Tags")

    with caplog.at_level(logging.WARNING):
        affected = await mutator.update({"Label": "Azure"}, {"Code": "blue", "Lang": "en"})

    assert affected == 0
    assert "treating as unchanged" in caplog.text
    assert await _scalar(shop, "SELECT Label FROM Tags WHERE Code = 'blue'") == "Blue"


@pytest.mark.asyncio
async def test_update_without_token_of_missing_row_raises_deleted(shop):
    """A row that no longer exists is reported as deleted even without a token."""
    mutator = _mutator(shop, "Tags")
    await mutator.delete({"Code": "red", "Lang": "fr"})

    with pytest.raises(ConcurrencyConflict) as exc_info:
        await mutator.update({"Label": "Rouge"}, {"Code": "red", "Lang": "fr"})

    assert exc_info.value.kind is ConflictKind.DELETED
    assert exc_info.value.operation == "update"


@pytest_asyncio.fixture
async def prices(tmp_path):
    path = str(tmp_path / "prices.db")
    conn = sqlite3.connect(path)
    try:
        conn.execute(
            'CREATE TABLE Prices (Id INTEGER PRIMARY KEY, "Unit Price" INT, '
            '"Unit-Price" INT, "unit_price" INT, "PK Id" INT)'
        )
        conn.commit()
    finally:
        conn.close()
    database = SqliteQueryTargetDatabase(path)
    await database.init()
    catalog = await SqliteSchemaIntrospector(database).discover()
    yield database, catalog
    await database.close()


async def _price_row(prices, price_id):
    database, _ = prices
    async with database.get_connection() as conn:
        return await conn.fetchrow(
            'SELECT "Unit Price" AS a, "Unit-Price" AS b, "unit_price" AS c, "PK Id" AS d '
            "FROM Prices WHERE Id = @Id",
            {"Id": price_id},
        )


@pytest.mark.asyncio
async def test_insert_keeps_values_of_columns_with_colliding_bind_names(prices):
    """Columns whose names normalize to the same bind name keep their own values."""
    new_id = await _mutator(prices, "Prices").insert(
        {"Unit Price": 1, "Unit-Price": 2, "unit_price": 3, "PK Id": 4}
    )

    assert await _price_row(prices, new_id) == {"a": 1, "b": 2, "c": 3, "d": 4}


@pytest.mark.asyncio
async def test_update_keeps_values_and_key_of_colliding_bind_names(prices):
    """Assigned values never overwrite each other or the original key value."""
    mutator = _mutator(prices, "Prices")
    first = await mutator.insert({"Unit Price": 1, "Unit-Price": 2})
    second = await mutator.insert({"Unit Price": 5, "Unit-Price": 6})

    affected = await mutator.update(
        {"Unit Price": 10, "Unit-Price": 20, "unit_price": 30, "PK Id": second},
        {"Id": first},
    )

    assert affected == 1
    assert await _price_row(prices, first) == {"a": 10, "b": 20, "c": 30, "d": second}
    assert await _price_row(prices, second) == {"a": 5, "b": 6, "c": None, "d": None}
