"""
Per-user credit balance.

Debits are applied to the in-memory balance first so the UI updates at once,
then written with a conditional update against the last balance we know was
persisted. Writes on one ledger are serialized. If another session changed
the row meanwhile, the ledger reloads the stored balance and applies the
change again on top of it. If the write itself fails, the ledger reloads and
the error propagates.
"""

import asyncio
import logging

from .database import SupabaseStore
from .errors import InsufficientCredits, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

WRITE_ATTEMPTS = 2


def _round(amount: float) -> float:
    return round(amount, 2)


class CreditLedger:
    def __init__(self, store: SupabaseStore, user_id: str, balance: float):
        self.store = store
        self.user_id = user_id
        self.balance = _round(max(0, balance))
        self._persisted = self.balance
        self._lock = asyncio.Lock()

    @classmethod
    async def load(cls, store: SupabaseStore, user_id: str) -> "CreditLedger":
        profile = await asyncio.to_thread(store.get_profile, user_id)
        if profile is None:
            raise ValidationError("Profile not found.")
        return cls(store, user_id, profile.credits)

    @property
    def persisted_balance(self) -> float:
        return self._persisted

    def can_afford(self, cost: float) -> bool:
        return self.balance >= cost

    def require(self, cost: float, message: str) -> None:
        if not self.can_afford(cost):
            raise InsufficientCredits(message, required=cost, available=self.balance)

    async def refresh(self) -> float:
        profile = await asyncio.to_thread(self.store.get_profile, self.user_id)
        if profile is not None:
            self.balance = self._persisted = _round(max(0, profile.credits))
        return self.balance

    async def debit(self, amount: float) -> float:
        """
        Subtract `amount`, clamped at zero. Returns the new balance.

        Raises:
            PersistenceError: the write failed; balance reloaded from the store.
        """
        if amount < 0:
            raise ValidationError("Debit amount must be positive.")
        async with self._lock:
            return await self._apply(-amount, f"debit {amount}")

    async def credit(self, amount: float) -> float:
        """Administrative top-up."""
        if amount <= 0:
            raise ValidationError("Top-up amount must be positive.")
        async with self._lock:
            return await self._apply(amount, f"credit {amount}")

    async def _apply(self, delta: float, reason: str) -> float:
        error = ""
        for attempt in range(1, WRITE_ATTEMPTS + 1):
            expected = self._persisted
            target = _round(max(0, expected + delta))
            self.balance = target
            try:
                written = await asyncio.to_thread(
                    self.store.update_credits, self.user_id, target, expected
                )
            except PersistenceError as e:
                written = False
                error = str(e)
            else:
                error = "balance changed by another session"

            if written:
                self._persisted = target
                logger.info(f"Credits for user {self.user_id}: {target} ({reason})")
                return target

            logger.warning(
                f"Credit {reason} for user {self.user_id} not persisted "
                f"(attempt {attempt}/{WRITE_ATTEMPTS}, {error}); reloading balance"
            )
            await self._reload()

        logger.error(f"Giving up on credit {reason} for user {self.user_id}: {error}")
        raise PersistenceError(f"Could not update credits: {error}")

    async def _reload(self) -> None:
        try:
            await self.refresh()
        except PersistenceError as e:
            logger.error(f"Could not reload credits for user {self.user_id}: {e}")
            self.balance = self._persisted
