"""Unit test environment helpers."""

import sqlite3

import pytest

ENGINE_ENV_VARS = (
    "QUERY_TARGET_PROVIDER",
    "SQLITE_DB_PATH",
    "DB_HOST",
    "DB_PORT",
    "DB_NAME",
    "DB_USER",
    "DB_PASS",
    "DAL_POOL_MIN_SIZE",
    "DAL_POOL_MAX_SIZE",
    "DAL_STATEMENT_TIMEOUT_SECONDS",
    "DAL_DEFAULT_PAGE_SIZE",
    "DAL_CONCURRENCY_TOKEN_TYPES",
    "DAL_INCLUDE_SCHEMAS",
    "DAL_EXCLUDE_TABLES",
    "DAL_TRACE_QUERIES",
)

SHOP_SCHEMA = """
CREATE TABLE Customers (
    CustomerId INTEGER PRIMARY KEY,
    Name TEXT NOT NULL,
    City TEXT
);
CREATE TABLE Orders (
    OrderId INTEGER PRIMARY KEY,
    CustomerId INTEGER NOT NULL REFERENCES Customers(CustomerId),
    Amount DECIMAL(10, 2),
    Notes VARCHAR(200),
    Attachment BLOB,
    RowVersion ROWVERSION NOT NULL DEFAULT 1
);
CREATE TRIGGER Orders_bump_row_version AFTER UPDATE ON Orders
BEGIN
    UPDATE Orders SET RowVersion = OLD.RowVersion + 1 WHERE OrderId = NEW.OrderId;
END;
CREATE TABLE Tags (
    Code TEXT NOT NULL,
    Lang TEXT NOT NULL,
    Label TEXT,
    PRIMARY KEY (Code, Lang)
);
CREATE TABLE AuditLog (
    Message TEXT,
    CreatedAt TEXT
);
CREATE TABLE Counters (
    CounterId INTEGER PRIMARY KEY
);
CREATE VIEW CustomerCities AS
    SELECT City, COUNT(*) AS CustomerCount FROM Customers GROUP BY City;
"""

CUSTOMERS = [
    (1, "Ada", "London"),
    (2, "Grace", "Arlington"),
    (3, "Linus", "Helsinki"),
]

ORDER_COUNT = 23


def seed_shop(path: str) -> None:
    """Create and populate the shop fixture database at `path`."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SHOP_SCHEMA)
        conn.executemany("INSERT INTO Customers VALUES (?, ?, ?)", CUSTOMERS)
        conn.executemany(
            "INSERT INTO Orders (OrderId, CustomerId, Amount, Notes) VALUES (?, ?, ?, ?)",
            [
                (i, (i % 3) + 1, f"{i * 10}.50", f"order {i:02d}")
                for i in range(1, ORDER_COUNT + 1)
            ],
        )
        conn.executemany(
            "INSERT INTO Tags VALUES (?, ?, ?)",
            [("red", "en", "Red"), ("red", "fr", "Rouge"), ("blue", "en", "Blue")],
        )
        conn.execute("INSERT INTO AuditLog VALUES ('created', '2024-01-01')")
        conn.commit()
    finally:
        conn.close()


@pytest.fixture(autouse=True)
def _minimal_env(monkeypatch):
    """Clear engine settings so tests never pick up the host environment."""
    for name in ENGINE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def shop_db_path(tmp_path) -> str:
    """Return the path of a freshly seeded shop database."""
    path = str(tmp_path / "shop.db")
    seed_shop(path)
    return path
