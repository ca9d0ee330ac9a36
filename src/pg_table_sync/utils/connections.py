"""PostgreSQL connection opening for the source and target sides."""

import logging
from typing import Any

import psycopg2
import psycopg2.extensions
import psycopg2.extras
from opentelemetry import trace

from .tracing import trace_operation

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10

# Settings that change how row_to_json renders values; both sides must agree.
SESSION_SETTINGS = (
    "SET TIME ZONE 'UTC'",
    "SET extra_float_digits = 3",
    "SET IntervalStyle = 'postgres'",
    "SET bytea_output = 'hex'",
)


def _raw_text(value: Any) -> Any:
    return value


def _pin_session(conn: psycopg2.extensions.connection) -> None:
    with conn.cursor() as cursor:
        for statement in SESSION_SETTINGS:
            cursor.execute(statement)
    conn.commit()
    logger.debug("Session settings pinned for row hashing")


def _register_raw_json(conn: psycopg2.extensions.connection) -> None:
    # json/jsonb come back as text so the upsert writes the exact source value.
    psycopg2.extras.register_default_json(conn, loads=_raw_text)
    psycopg2.extras.register_default_jsonb(conn, loads=_raw_text)


def _connect(dsn: str, side: str) -> psycopg2.extensions.connection:
    params = psycopg2.extensions.parse_dsn(dsn)
    with trace_operation(
        "postgres_connect",
        kind=trace.SpanKind.CLIENT,
        side=side,
        db_host=params.get("host", ""),
        db_name=params.get("dbname", ""),
    ):
        conn = psycopg2.connect(dsn, connect_timeout=CONNECT_TIMEOUT)
        try:
            _pin_session(conn)
        except psycopg2.Error:
            conn.close()
            raise
        _register_raw_json(conn)
        return conn


def connect_source(dsn: str) -> psycopg2.extensions.connection:
    """
    Open the source connection.

    The session is read-only with REPEATABLE READ isolation, so every read of
    a run (fingerprinting and materialization) observes a single snapshot.

    Args:
        dsn: libpq connection string or URI

    Returns:
        psycopg2 connection
    """
    conn = _connect(dsn, "source")
    conn.set_session(
        isolation_level=psycopg2.extensions.ISOLATION_LEVEL_REPEATABLE_READ,
        readonly=True,
        autocommit=False,
    )
    logger.info("Connected to source database")
    return conn


def connect_target(dsn: str) -> psycopg2.extensions.connection:
    """
    Open the target connection in autocommit mode.

    The applier switches it into an explicit transaction for the write phase.

    Args:
        dsn: libpq connection string or URI

    Returns:
        psycopg2 connection
    """
    conn = _connect(dsn, "target")
    conn.set_session(autocommit=True)
    logger.info("Connected to target database")
    return conn


def close_quietly(conn: psycopg2.extensions.connection | None) -> None:
    """Close a connection, logging instead of raising on failure."""
    if conn is None or conn.closed:
        return
    try:
        conn.close()
    except psycopg2.Error as e:
        logger.warning(f"Error closing connection: {e}")
