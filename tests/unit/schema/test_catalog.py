import pytest
from pydantic import ValidationError

from schema.catalog import ColumnMetadata, PrimaryKeyMetadata, SchemaCatalog, TableMetadata


def _column(table, name, ordinal, schema="sales", **kwargs):
    return ColumnMetadata(
        schema_name=schema,
        table_name=table,
        name=name,
        ordinal_position=ordinal,
        data_type=kwargs.pop("data_type", "int"),
        **kwargs,
    )


def _table(schema, name, *column_names):
    columns = tuple(_column(name, c, i + 1, schema=schema) for i, c in enumerate(column_names))
    return TableMetadata(schema_name=schema, table_name=name, columns=columns)


@pytest.fixture
def catalog():
    return SchemaCatalog(
        [
            _table("sales", "Orders", "OrderId"),
            _table("sales", "order_archive", "OrderId"),
            _table("hr", "Employees", "EmployeeId"),
            _table("dbo", "Settings", "Key"),
        ]
    )


def test_lookup_is_case_insensitive(catalog):
    """Tables resolve regardless of identifier case."""
    assert catalog.get_table("SALES", "orders").table_name == "Orders"
    assert ("Hr", "EMPLOYEES") in catalog
    assert catalog.get_table("sales", "missing") is None


def test_table_raises_key_error_for_unknown(catalog):
    """The strict accessor names the missing table."""
    with pytest.raises(KeyError, match="sales.Nope"):
        catalog.table("sales", "Nope")


def test_find_uses_default_schema_for_bare_names(catalog):
    """A bare name resolves against the given default schema."""
    assert catalog.find("Settings", "dbo").full_name == "dbo.Settings"
    assert catalog.find("hr.employees", "dbo").full_name == "hr.Employees"
    assert catalog.find("Orders", "dbo") is None


def test_tables_sorted_by_schema_then_name(catalog):
    """Iteration order is stable."""
    assert [t.full_name for t in catalog] == [
        "dbo.Settings",
        "hr.Employees",
        "sales.order_archive",
        "sales.Orders",
    ]


def test_filtered_include_schemas_and_exclude_tables(catalog):
    """Include matches schema names, exclude matches schema.table."""
    filtered = catalog.filtered(include_schemas=["sal*", "h?"], exclude_tables=["sales.%archive"])

    assert sorted(t.full_name for t in filtered) == ["hr.Employees", "sales.Orders"]
    assert len(catalog) == 4


def test_filtered_with_no_patterns_keeps_everything(catalog):
    """Empty pattern lists are no-ops."""
    assert len(catalog.filtered()) == len(catalog)


def test_duplicate_column_names_rejected():
    """Column names are unique per table, case-insensitively."""
    with pytest.raises(ValidationError, match="Duplicate column"):
        TableMetadata(
            schema_name="s",
            table_name="T",
            columns=(_column("T", "Id", 1, schema="s"), _column("T", "ID", 2, schema="s")),
        )


def test_ordinals_must_increase():
    """Ordinal positions are unique and strictly increasing."""
    with pytest.raises(ValidationError, match="increasing"):
        TableMetadata(
            schema_name="s",
            table_name="T",
            columns=(_column("T", "A", 2, schema="s"), _column("T", "B", 2, schema="s")),
        )


def test_column_must_belong_to_table():
    """A column's owner identity must match its table."""
    with pytest.raises(ValidationError, match="does not belong"):
        TableMetadata(schema_name="s", table_name="T", columns=(_column("Other", "A", 1),))


def test_primary_key_columns_follow_key_order():
    """Composite keys are returned in key ordinal order, not column order."""
    a = _column("T", "A", 1, schema="s", is_primary_key=True)
    b = _column("T", "B", 2, schema="s", is_primary_key=True)
    table = TableMetadata(
        schema_name="s",
        table_name="T",
        columns=(a, b),
        primary_keys=(
            PrimaryKeyMetadata(schema_name="s", table_name="T", column=a, ordinal_position=2),
            PrimaryKeyMetadata(schema_name="s", table_name="T", column=b, ordinal_position=1),
        ),
    )
    assert [c.name for c in table.primary_key_columns] == ["B", "A"]


def test_only_first_concurrency_token_is_used():
    """Additional token columns are ignored."""
    table = TableMetadata(
        schema_name="s",
        table_name="T",
        columns=(
            _column("T", "V1", 1, schema="s", is_concurrency_token=True),
            _column("T", "V2", 2, schema="s", is_concurrency_token=True),
        ),
    )
    assert table.concurrency_token.name == "V1"


def test_writable_excludes_identity_computed_and_token():
    """Only caller-settable columns are writable."""
    assert _column("T", "A", 1).is_writable
    assert not _column("T", "A", 1, is_identity=True).is_writable
    assert not _column("T", "A", 1, is_computed=True).is_writable
    assert not _column("T", "A", 1, is_concurrency_token=True).is_writable


def test_models_are_frozen():
    """Catalog entries are immutable after construction."""
    column = _column("T", "A", 1)
    with pytest.raises(ValidationError):
        column.name = "B"
