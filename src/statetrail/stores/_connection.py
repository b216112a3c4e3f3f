"""
Connection scoping for the SQLAlchemy-backed stores.

The PostgreSQL stores accept either an AsyncEngine or an AsyncConnection.
``connection_scope`` opens what a single store call needs and maps driver
failures onto the migration error taxonomy:

- Engine + ``write=True``: a connection inside its own transaction
- Engine + ``write=False``: a plain connection
- Connection: used as-is, the caller owns the transaction

Dropped connections and other operational failures are raised as
TransientStoreError so the writer's retry policy can see them. Constraint
violations and programming errors propagate unchanged.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from statetrail.exceptions import TransientStoreError


def is_transient_dbapi_error(error: DBAPIError) -> bool:
    """Whether a driver error is worth retrying on a fresh connection."""
    return bool(error.connection_invalidated) or isinstance(
        error, OperationalError | InterfaceError
    )


@asynccontextmanager
async def connection_scope(
    bind: AsyncConnection | AsyncEngine,
    operation: str,
    *,
    write: bool = False,
) -> AsyncIterator[AsyncConnection]:
    """
    Provide a connection for one store call.

    Args:
        bind: Engine or connection the store was built with.
        operation: Name used in TransientStoreError messages.
        write: Open a transaction when ``bind`` is an engine.

    Yields:
        AsyncConnection ready for execute() calls

    Raises:
        TransientStoreError: If the driver reports a transient failure.

    Example:
        >>> async with connection_scope(self._conn, "read_page") as conn:
        ...     result = await conn.execute(query, params)
    """
    try:
        if isinstance(bind, AsyncEngine):
            opener = bind.begin() if write else bind.connect()
            async with opener as connection:
                yield connection
        else:
            yield bind
    except DBAPIError as e:
        if is_transient_dbapi_error(e):
            raise TransientStoreError(f"{operation} failed: {e}", cause=e) from e
        raise


__all__ = ["connection_scope", "is_transient_dbapi_error"]
