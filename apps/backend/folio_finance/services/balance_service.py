from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from folio_finance import models


@dataclass(frozen=True)
class BalanceEffect:
    """What a transaction contributes to account balances."""

    type: models.TxnType
    amount: Decimal
    account_id: int
    to_account_id: Optional[int] = None

    @classmethod
    def of(cls, txn: models.Transaction) -> "BalanceEffect":
        return cls(models.TxnType(txn.type), Decimal(txn.amount), txn.account_id, txn.to_account_id)

    def deltas(self) -> list[tuple[int, Decimal]]:
        magnitude = abs(self.amount)
        if magnitude == 0:
            return []
        if self.type == models.TxnType.INCOME:
            return [(self.account_id, magnitude)]
        if self.type == models.TxnType.EXPENSE:
            return [(self.account_id, -magnitude)]
        if self.to_account_id is None or self.to_account_id == self.account_id:
            return []
        return [(self.account_id, -magnitude), (self.to_account_id, magnitude)]


class TransactionBalanceService:
    """Coordinate account balance adjustments for transactions.

    Every adjustment is a single ``UPDATE ... SET current_balance =
    current_balance + :delta`` so concurrent writers never lose an update.
    Nothing here commits; the caller owns the unit of work.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def apply(self, effect: BalanceEffect) -> None:
        for account_id, delta in effect.deltas():
            self._apply_delta(account_id, delta)

    def revert(self, effect: BalanceEffect) -> None:
        for account_id, delta in effect.deltas():
            self._apply_delta(account_id, -delta)

    def _apply_delta(self, account_id: int, delta: Decimal) -> None:
        if delta == 0:
            return
        (
            self.db.query(models.Account)
            .filter(models.Account.id == account_id)
            .update(
                {models.Account.current_balance: models.Account.current_balance + delta},
                synchronize_session="fetch",
            )
        )

    def computed_balance(self, account: models.Account) -> tuple[Decimal, int]:
        """Replay ``initial_balance`` plus every active transaction touching the account."""
        Txn = models.Transaction
        own_signed = case(
            (Txn.type == models.TxnType.INCOME, Txn.amount),
            else_=-Txn.amount,
        )
        own_sum, own_count = (
            self.db.query(func.coalesce(func.sum(own_signed), 0), func.count(Txn.id))
            .filter(Txn.account_id == account.id, Txn.is_active)
            .filter(~((Txn.type == models.TxnType.TRANSFER) & (Txn.to_account_id.is_(None))))
            .one()
        )
        incoming_sum, incoming_count = (
            self.db.query(func.coalesce(func.sum(Txn.amount), 0), func.count(Txn.id))
            .filter(
                Txn.to_account_id == account.id,
                Txn.type == models.TxnType.TRANSFER,
                Txn.account_id != account.id,
                Txn.is_active,
            )
            .one()
        )
        total = Decimal(account.initial_balance or 0) + Decimal(str(own_sum)) + Decimal(str(incoming_sum))
        return total, int(own_count) + int(incoming_count)

    def recalculate(self, account: models.Account) -> Decimal:
        """Reset ``current_balance`` to the replayed value. Caller commits."""
        computed, _ = self.computed_balance(account)
        account.current_balance = computed
        return computed
