"""In-memory transaction registry keyed by `CheckoutRequestID`.

The store is constructed explicitly at app startup and handed to the payment
service; it starts empty and lives as long as the process. Every operation on
a key runs under that key's lock, and callers only ever receive copies, so a
reader never observes a half-applied mutation.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime

from stkpay.common.errors import DuplicateKeyError, TransactionNotFoundError
from stkpay.common.state_machine import is_terminal
from stkpay.services.orchestrator.models import Transaction


class TransactionStore:
    """Owns every transaction record for the life of the process."""

    def __init__(self) -> None:
        self._records: dict[str, Transaction] = {}
        # One lock per stored key; created with the record, dropped with it.
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def _existing_lock(self, checkout_request_id: str) -> asyncio.Lock:
        async with self._guard:
            lock = self._locks.get(checkout_request_id)
        if lock is None:
            raise TransactionNotFoundError(checkout_request_id)
        return lock

    async def create(self, checkout_request_id: str, **fields) -> Transaction:
        """Insert a new `pending` record; the key must not exist yet."""

        record = Transaction(checkout_request_id=checkout_request_id, **fields)
        async with self._guard:
            if checkout_request_id in self._locks:
                raise DuplicateKeyError(checkout_request_id)
            self._locks[checkout_request_id] = asyncio.Lock()
            self._records[checkout_request_id] = record
        return record.model_copy(deep=True)

    async def get(self, checkout_request_id: str) -> Transaction:
        async with await self._existing_lock(checkout_request_id):
            record = self._records.get(checkout_request_id)
            if record is None:
                raise TransactionNotFoundError(checkout_request_id)
            return record.model_copy(deep=True)

    async def update(
        self, checkout_request_id: str, mutator: Callable[[Transaction], Awaitable[None] | None]
    ) -> Transaction:
        """Apply `mutator` to a working copy and swap it in atomically.

        `mutator` may be a coroutine function; the key stays locked until it
        finishes. If the mutator raises, the stored record is left untouched.
        """

        async with await self._existing_lock(checkout_request_id):
            record = self._records.get(checkout_request_id)
            if record is None:
                raise TransactionNotFoundError(checkout_request_id)
            working = record.model_copy(deep=True)
            result = mutator(working)
            if inspect.isawaitable(result):
                await result
            self._records[checkout_request_id] = working
            return working.model_copy(deep=True)

    async def purge_settled(self, older_than: datetime) -> int:
        """Drop terminal records last updated before `older_than`.

        Pending records are kept regardless of age.
        """

        async with self._guard:
            candidates = [
                key
                for key, record in self._records.items()
                if is_terminal(record.status) and record.updated_at < older_than
            ]

        purged = 0
        for key in candidates:
            try:
                lock = await self._existing_lock(key)
            except TransactionNotFoundError:
                continue
            async with lock:
                record = self._records.get(key)
                if record is None or not is_terminal(record.status) or record.updated_at >= older_than:
                    continue
                async with self._guard:
                    del self._records[key]
                    del self._locks[key]
                purged += 1
        return purged
