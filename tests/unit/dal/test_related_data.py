import logging

import pytest
import pytest_asyncio

from common.errors import DataOperationError, PreconditionError
from dal.related_data import RelatedDataReader
from dal.sqlite import SqliteQueryTargetDatabase, SqliteSchemaIntrospector
from schema.cells import Cell
from schema.overrides import LookupDefinition, RelatedChildDefinition

ORDERS = RelatedChildDefinition(name="Orders", child_table="Orders", child_fk_column="CustomerId")


@pytest_asyncio.fixture
async def shop(shop_db_path):
    database = SqliteQueryTargetDatabase(shop_db_path)
    await database.init()
    catalog = await SqliteSchemaIntrospector(database).discover()
    yield database, catalog
    await database.close()


def _reader(shop, table_name="Customers"):
    database, catalog = shop
    return RelatedDataReader(database, catalog, catalog.table("main", table_name))


@pytest.mark.asyncio
async def test_fetch_related_rows_by_parent_key(shop):
    """Child rows are selected by the parent's single key value."""
    rows = await _reader(shop).fetch_related_rows(ORDERS, {"CustomerId": Cell.of(3)})

    assert len(rows) == 8
    assert {row.value("CustomerId") for row in rows} == {3}
    assert "RowVersion" in rows.columns


@pytest.mark.asyncio
async def test_child_filter_is_appended(shop):
    """A static child filter narrows the child rows."""
    relation = ORDERS.model_copy(update={"child_filter": '"OrderId" > 20'})

    rows = await _reader(shop).fetch_related_rows(relation, {"customerid": 1})

    assert [row.value("OrderId") for row in rows] == [21]


@pytest.mark.asyncio
async def test_explicit_parent_key_column(shop):
    """A configured parent column is used instead of the primary key."""
    relation = RelatedChildDefinition(
        name="SameCity",
        child_table="main.Customers",
        child_fk_column="City",
        parent_key_column="City",
    )

    rows = await _reader(shop).fetch_related_rows(relation, {"City": "Helsinki"})

    assert [row.value("Name") for row in rows] == ["Linus"]


@pytest.mark.asyncio
async def test_empty_or_missing_parent_key_returns_empty(shop, caplog):
    """No parent key means no child rows."""
    reader = _reader(shop)

    assert len(await reader.fetch_related_rows(ORDERS, {})) == 0
    with caplog.at_level(logging.ERROR):
        assert len(await reader.fetch_related_rows(ORDERS, {"Name": "Ada"})) == 0
    assert "CustomerId" in caplog.text


@pytest.mark.asyncio
async def test_unknown_child_table_or_column_raises(shop):
    """Configuration naming unknown objects is a precondition error."""
    reader = _reader(shop)

    with pytest.raises(PreconditionError, match="Invoices"):
        await reader.fetch_related_rows(
            RelatedChildDefinition(name="x", child_table="Invoices", child_fk_column="Id"),
            {"CustomerId": 1},
        )
    with pytest.raises(PreconditionError, match="ClientId"):
        await reader.fetch_related_rows(
            RelatedChildDefinition(name="x", child_table="Orders", child_fk_column="ClientId"),
            {"CustomerId": 1},
        )


@pytest.mark.asyncio
async def test_parent_without_single_key_requires_configured_column(shop):
    """Composite-key parents must name the parent column."""
    relation = RelatedChildDefinition(name="x", child_table="Tags", child_fk_column="Code")

    with pytest.raises(PreconditionError, match="single-column primary key"):
        await _reader(shop, "Tags").fetch_related_rows(relation, {"Code": "red"})


@pytest.mark.asyncio
async def test_invalid_child_filter_surfaces_as_data_error(shop):
    """A broken child filter fails with operation context."""
    relation = ORDERS.model_copy(update={"child_filter": "NoSuchColumn = 1"})

    with pytest.raises(DataOperationError) as exc_info:
        await _reader(shop).fetch_related_rows(relation, {"CustomerId": 1})

    assert exc_info.value.operation == "fetch_related_rows"
    assert exc_info.value.table == "main.Orders"


@pytest.mark.asyncio
async def test_fetch_lookup_rows_defaults_value_to_primary_key(shop):
    """Lookups return distinct display/value pairs ordered by display."""
    lookup = LookupDefinition(
        column="CustomerId", referenced_table="Customers", display_column="Name"
    )

    rows = await _reader(shop, "Orders").fetch_lookup_rows(lookup)

    assert rows.columns == ("Name", "CustomerId")
    assert [(r.value("Name"), r.value("CustomerId")) for r in rows] == [
        ("Ada", 1),
        ("Grace", 2),
        ("Linus", 3),
    ]


@pytest.mark.asyncio
async def test_fetch_lookup_rows_with_explicit_value_column(shop):
    """Composite-key tables can be looked up by an explicit value column."""
    lookup = LookupDefinition(
        column="Code",
        referenced_table="Tags",
        display_column="Code",
        value_column="Code",
    )

    rows = await _reader(shop, "Orders").fetch_lookup_rows(lookup)

    assert [r.value("Code") for r in rows] == ["blue", "red"]


@pytest.mark.asyncio
async def test_fetch_lookup_rows_requires_single_key_without_value_column(shop):
    """Without a value column the referenced table needs a single key."""
    lookup = LookupDefinition(column="Code", referenced_table="Tags", display_column="Label")

    with pytest.raises(PreconditionError):
        await _reader(shop, "Orders").fetch_lookup_rows(lookup)
