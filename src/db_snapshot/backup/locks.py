"""Lock Acquisition Engine.

Takes ACCESS SHARE locks on every table in the inventory, in inventory
order, in fixed-size batches of one ``LOCK TABLE`` statement each.  ACCESS
SHARE conflicts only with ACCESS EXCLUSIVE, so reads and writes carry on
while no DDL can change a locked table before the snapshot is dumped.  The
locks are held until the backup transaction commits.

Acquisition is the one cancellable phase of a run.  A ``CancelToken`` is
bound to the connection while batches are issued; cancelling it (normally
from a SIGINT/SIGTERM handler installed by ``cancel_on_signals``) sends a
cancel request for the lock statement in flight, so no lock-wait is left
behind on the server.  The token is unbound once acquisition ends.

Any batch failing fails the whole run: a partial lock set cannot guarantee a
consistent snapshot.
"""

import logging
import signal
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import TypeVar

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.catalog.models import Relation
from db_snapshot.config.models import DEFAULT_LOCK_BATCH_SIZE
from db_snapshot.errors import LockCancelledError, QueryCancelledError, QueryError, SnapshotError

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_MODE = "ACCESS SHARE"


class CancelToken:
    """Thread- and signal-safe request to abort the statement in flight.

    While bound, ``cancel()`` invokes the bound callback (typically
    ``connection.cancel``).  Once unbound, cancelling only records the
    request.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.RLock()
        self._callback: Callable[[], None] | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def bind(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._callback = callback

    def unbind(self) -> None:
        with self._lock:
            self._callback = None

    def cancel(self) -> None:
        self._event.set()
        with self._lock:
            callback = self._callback
        if callback is not None:
            callback()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise LockCancelledError("Lock acquisition was cancelled")


@contextmanager
def cancel_on_signals(
    token: CancelToken,
    signals: Sequence[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[CancelToken]:
    """Route ``signals`` to ``token.cancel()`` for the duration of the block.

    Previous handlers are restored on exit.  Outside the main thread signal
    handlers cannot be installed; the token then only cancels when called
    directly.
    """
    if threading.current_thread() is not threading.main_thread():
        logger.debug("Not in the main thread; signal-driven cancellation disabled")
        yield token
        return

    def _handler(signum, frame):
        logger.warning("Received %s; cancelling lock acquisition", signal.Signals(signum).name)
        token.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in signals}
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def generate_table_batches(tables: Sequence[T], batch_size: int = DEFAULT_LOCK_BATCH_SIZE) -> list[list[T]]:
    """Split ``tables`` into consecutive batches of ``batch_size``.

    Every batch but the last is full; order is preserved and each table
    appears exactly once.

    Example:
        >>> generate_table_batches([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    return [list(tables[i:i + batch_size]) for i in range(0, len(tables), batch_size)]


def lock_statement(batch: Sequence[Relation]) -> str:
    names = ", ".join(table.fqn() for table in batch)
    return f"LOCK TABLE {names} IN {LOCK_MODE} MODE"


def lock_tables(
    connection: DatabaseConnection,
    tables: Sequence[Relation],
    batch_size: int = DEFAULT_LOCK_BATCH_SIZE,
    token: CancelToken | None = None,
    show_progress: bool = False,
    console: Console | None = None,
) -> int:
    """Lock every table, batch by batch, inside the open transaction.

    Args:
        connection: Connection with the backup transaction open.
        tables: Tables in inventory order.
        batch_size: Tables per LOCK TABLE statement.
        token: Cancellation token; bound to ``connection.cancel`` while
            batches run.
        show_progress: Render a progress bar.
        console: Console for the progress bar.

    Returns:
        Number of tables locked.

    Raises:
        LockCancelledError: If ``token`` was cancelled.
        SnapshotError: If any lock statement failed.
    """
    token = token or CancelToken()
    batches = generate_table_batches(tables, batch_size)
    logger.info("Acquiring %s locks on %d table(s) in %d batch(es)", LOCK_MODE, len(tables), len(batches))

    progress = Progress(
        TextColumn("Locking tables"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=not show_progress,
        transient=True,
    )

    token.bind(connection.cancel)
    try:
        with progress:
            task = progress.add_task("locks", total=len(tables))
            for number, batch in enumerate(batches, start=1):
                token.raise_if_cancelled()
                try:
                    connection.exec(lock_statement(batch))
                except QueryCancelledError as e:
                    if token.cancelled:
                        raise LockCancelledError("Lock acquisition was cancelled") from e
                    raise SnapshotError(f"Lock batch {number} of {len(batches)} was cancelled by the server: {e}") from e
                except QueryError as e:
                    raise SnapshotError(f"Lock batch {number} of {len(batches)} failed: {e}") from e
                progress.advance(task, len(batch))
                logger.debug("Locked batch %d/%d (%d table(s))", number, len(batches), len(batch))
            token.raise_if_cancelled()
    finally:
        # later phases must run to completion
        token.unbind()

    logger.info("Locks acquired on %d table(s)", len(tables))
    return len(tables)
