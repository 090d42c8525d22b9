"""
Database connections.

Supabase holds the commerce data (orders, line items, catalog); the roster
ledger lives in a SQL database reached through SQLAlchemy.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from supabase import Client, create_client

from roster_reports.config import Config
from roster_reports.schema import Base

logger = logging.getLogger(__name__)

PAGE_SIZE = Config.SUPABASE_PAGE_SIZE

# Stable paging order per commerce table
TABLE_KEYS = {
    "orders": "order_id",
    "order_items": "item_id",
    "products": "product_id",
    "product_variations": "variation_id",
}


def get_supabase_client() -> Client:
    """
    Initialize and return a Supabase client.

    Returns:
        Client: Initialized Supabase client

    Raises:
        ValueError: If configuration is invalid
    """
    Config.validate()

    client = create_client(Config.SUPABASE_URL, Config.SUPABASE_SERVICE_ROLE_KEY)
    logger.info("Supabase client initialized successfully")
    return client


def iter_table_pages(
    client: Client,
    table_name: str,
    order_by: str,
    columns: str = "*",
    filters: Optional[Dict[str, Any]] = None,
    in_filters: Optional[Dict[str, List[Any]]] = None,
    since: Optional[Dict[str, str]] = None,
    page_size: Optional[int] = None,
) -> Iterator[pd.DataFrame]:
    """
    Read a Supabase table page by page.

    PostgREST caps every response at its max_rows setting, so a single
    select silently truncates large tables. Pages are requested with
    `.range()` in `order_by` order until a short page comes back, so
    `page_size` must not exceed the server's max_rows.

    Args:
        client: Supabase client
        table_name: Name of the table to query
        order_by: Column giving a stable row order across pages
        columns: Column names to select (default: "*" for all)
        filters: Equality filters, column -> value
        in_filters: Membership filters, column -> allowed values
        since: Lower bounds, column -> minimum value (inclusive)
        page_size: Rows per request (default: PAGE_SIZE)

    Yields:
        One non-empty DataFrame per page
    """
    page_size = page_size or PAGE_SIZE
    start = 0
    while True:
        try:
            query = client.table(table_name).select(columns)
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            for column, values in (in_filters or {}).items():
                query = query.in_(column, list(values))
            for column, value in (since or {}).items():
                query = query.gte(column, value)
            response = query.order(order_by).range(start, start + page_size - 1).execute()
        except Exception as e:
            logger.error(f"Error querying table {table_name} (rows from {start}): {e}")
            raise

        rows = response.data or []
        logger.debug(f"Retrieved {len(rows)} rows from {table_name} (rows from {start})")
        if rows:
            yield pd.DataFrame(rows)
        if len(rows) < page_size:
            return
        start += page_size


def query_table_to_dataframe(
    client: Client,
    table_name: str,
    columns: str = "*",
    filters: Optional[Dict[str, Any]] = None,
    in_filters: Optional[Dict[str, List[Any]]] = None,
    since: Optional[Dict[str, str]] = None,
    order_by: Optional[str] = None,
    limit: Optional[int] = None,
) -> pd.DataFrame:
    """
    Query a Supabase table and return as pandas DataFrame.

    Every page of the table is read; see iter_table_pages.

    Args:
        client: Supabase client
        table_name: Name of the table to query
        columns: Column names to select (default: "*" for all)
        filters: Equality filters, column -> value
        in_filters: Membership filters, column -> allowed values
        since: Lower bounds, column -> minimum value (inclusive)
        order_by: Column to sort ascending by (default: first key column of the table)
        limit: Maximum number of rows

    Returns:
        DataFrame containing table data
    """
    order_by = order_by or TABLE_KEYS.get(table_name, "id")
    frames = []
    total = 0
    for page in iter_table_pages(client, table_name, order_by, columns, filters, in_filters, since):
        frames.append(page)
        total += len(page)
        if limit and total >= limit:
            break

    df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
    if limit:
        df = df.head(limit)
    logger.info(f"Retrieved {len(df)} rows from {table_name}")
    return df


def write_item_discounts(client: Client, allocations: List[Dict[str, Any]]) -> None:
    """
    Write discount allocations back onto order line items.

    Each entry must have:
    - item_id
    - discount_total
    - discount_breakdown (list of {name, type, amount, applied_to})

    Args:
        client: Supabase client
        allocations: One entry per line item
    """
    try:
        for allocation in allocations:
            client.table("order_items").update(
                {
                    "discount_total": round(float(allocation["discount_total"]), 2),
                    "discount_breakdown": allocation["discount_breakdown"],
                }
            ).eq("item_id", allocation["item_id"]).execute()

        logger.info(f"Wrote discount allocations for {len(allocations)} line items")

    except Exception as e:
        logger.error(f"Error writing discount allocations: {e}")
        raise


def get_engine(database_url: Optional[str] = None) -> Engine:
    """Create the SQLAlchemy engine for the roster ledger."""
    url = database_url or Config.DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    logger.info(f"Roster ledger engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Session factory bound to the ledger engine; objects stay readable after commit."""
    engine = engine or get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create the roster ledger tables if they do not exist."""
    Base.metadata.create_all(bind=engine)
    logger.info("Roster ledger schema is up to date")
