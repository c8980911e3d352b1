"""
Wallet Ledger

The only component allowed to change a wallet balance.

CRITICAL: A balance change and the audit entry describing it are one
storage call (apply_balance_change). Either both are persisted or
neither is, and the caller gets a ConsistencyError for the latter.

Lost updates are prevented twice:
- inside the process, a per-wallet asyncio.Lock serializes
  read-modify-write on the same wallet
- across processes, the storage compare-and-sets the wallet version
"""

import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Optional

import structlog

from pocket_ledger.audit import AuditTrail, create_correlation_id
from pocket_ledger.errors import (
    ConsistencyError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidTransactionError,
    LedgerError,
    WalletNotFoundError,
)
from pocket_ledger.models.audit import AuditEntityType, AuditEntryBuilder, AuditLogEntry
from pocket_ledger.models.ledger import ZERO, Wallet, WalletType
from pocket_ledger.models.reports import BalanceChange
from pocket_ledger.services.storage import StorageError, WalletStorageInterface


class WalletLedger:
    """
    Owns wallet balances.

    Usage:
        ledger = WalletLedger(wallet_storage, audit_trail)
        change = await ledger.adjust(owner_id, wallet_id, Decimal("-50"), "Groceries")
    """

    def __init__(self, storage: WalletStorageInterface, audit: AuditTrail):
        self._storage = storage
        self._audit = audit
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # READS
    # =========================================================================

    async def find_wallet(self, owner_id: str, wallet_id: str) -> Optional[Wallet]:
        return await self._storage.get_wallet(owner_id, wallet_id)

    async def get_wallet(self, owner_id: str, wallet_id: str) -> Wallet:
        wallet = await self._storage.get_wallet(owner_id, wallet_id)
        if wallet is None:
            raise WalletNotFoundError(wallet_id)
        return wallet

    async def list_wallets(self, owner_id: str) -> list[Wallet]:
        return await self._storage.list_wallets(owner_id)

    async def total_balance(self, owner_id: str) -> Decimal:
        wallets = await self._storage.list_wallets(owner_id)
        return sum((w.balance for w in wallets), ZERO)

    async def history(
        self,
        owner_id: str,
        wallet_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """Audit entries of one wallet, oldest first."""
        return await self._audit.history(
            owner_id, AuditEntityType.WALLET, wallet_id, limit=limit, offset=offset
        )

    # =========================================================================
    # BALANCE CHANGES
    # =========================================================================

    async def adjust(
        self,
        owner_id: str,
        wallet_id: str,
        delta: Decimal,
        reason: str,
        details: Optional[dict] = None,
        correlation_id: Optional[str] = None,
    ) -> BalanceChange:
        """
        Credit (delta > 0) or debit (delta < 0) a wallet.

        Raises:
            InvalidAmountError: delta is zero
            WalletNotFoundError: wallet missing for this owner
            InsufficientFundsError: the debit would make the balance negative
            ConsistencyError: balance and audit entry could not be persisted together
        """
        if delta == 0:
            raise InvalidAmountError("Adjustment amount must not be zero")

        async with self._locks[wallet_id]:
            wallet = await self.get_wallet(owner_id, wallet_id)
            return await self._commit(wallet, delta, reason, details, correlation_id)

    async def set_balance(
        self,
        owner_id: str,
        wallet_id: str,
        new_balance: Decimal,
        reason: str = "Manual balance edit",
    ) -> Optional[BalanceChange]:
        """
        Set a wallet to an explicit balance, recorded as an adjustment.

        Returns None when the balance is already the requested one.
        """
        if new_balance < 0:
            raise InvalidAmountError("Wallet balance cannot be negative")

        async with self._locks[wallet_id]:
            wallet = await self.get_wallet(owner_id, wallet_id)
            delta = new_balance - wallet.balance
            if delta == 0:
                return None
            return await self._commit(wallet, delta, reason, {"source": "balance_edit"}, None)

    async def check_funds(self, owner_id: str, wallet_id: str, delta: Decimal) -> Wallet:
        """
        Validate an adjustment without applying it.

        Raises the same WalletNotFoundError / InsufficientFundsError that
        adjust would raise right now.
        """
        wallet = await self.get_wallet(owner_id, wallet_id)
        if delta < 0 and wallet.balance + delta < 0:
            raise InsufficientFundsError(wallet.id, wallet.balance, -delta)
        return wallet

    async def apply_batch(
        self,
        owner_id: str,
        deltas: dict[str, Decimal],
        reason: str,
        details: Optional[dict] = None,
        correlation_id: Optional[str] = None,
    ) -> list[BalanceChange]:
        """
        Apply several adjustments that belong to one user action.

        Every wallet is validated first, so ordinary input errors surface
        before anything is written. Debits are applied before credits.

        Raises:
            ConsistencyError: an adjustment failed after another one was applied
        """
        pending = {wallet_id: delta for wallet_id, delta in deltas.items() if delta != 0}
        for wallet_id, delta in pending.items():
            await self.check_funds(owner_id, wallet_id, delta)

        correlation_id = correlation_id or create_correlation_id()
        applied: list[BalanceChange] = []
        for wallet_id, delta in sorted(pending.items(), key=lambda item: item[1]):
            try:
                change = await self.adjust(
                    owner_id, wallet_id, delta, reason,
                    details=details, correlation_id=correlation_id,
                )
            except LedgerError as e:
                if not applied:
                    raise
                self._logger.error(
                    "ledger_consistency_failure",
                    owner_id=owner_id,
                    correlation_id=correlation_id,
                    applied=[c.audit_entry_id for c in applied],
                    failed_wallet_id=wallet_id,
                    error=str(e),
                )
                raise ConsistencyError(
                    f"Adjustment of wallet {wallet_id} failed after "
                    f"{len(applied)} other adjustment(s) were applied: {e}",
                    entity_id=wallet_id,
                ) from e
            applied.append(change)
        return applied

    async def transfer(
        self,
        owner_id: str,
        from_wallet_id: str,
        to_wallet_id: str,
        amount: Decimal,
        reason: str = "Transfer",
    ) -> list[BalanceChange]:
        """Move money between two of the owner's wallets."""
        if amount <= 0:
            raise InvalidAmountError("Transfer amount must be positive")
        if from_wallet_id == to_wallet_id:
            raise InvalidTransactionError("Source and target wallet must be different")

        return await self.apply_batch(
            owner_id,
            {from_wallet_id: -amount, to_wallet_id: amount},
            reason,
            details={"from_wallet_id": from_wallet_id, "to_wallet_id": to_wallet_id},
        )

    async def _commit(
        self,
        wallet: Wallet,
        delta: Decimal,
        reason: str,
        details: Optional[dict],
        correlation_id: Optional[str],
    ) -> BalanceChange:
        new_balance = wallet.balance + delta
        if delta < 0 and new_balance < 0:
            raise InsufficientFundsError(wallet.id, wallet.balance, -delta)

        entry = AuditEntryBuilder.balance_change(
            wallet, new_balance, delta, reason,
            details=details, correlation_id=correlation_id,
        )
        try:
            await self._storage.apply_balance_change(
                wallet.owner_id, wallet.id, wallet.version, new_balance, entry
            )
        except StorageError as e:
            self._logger.error(
                "ledger_consistency_failure",
                owner_id=wallet.owner_id,
                wallet_id=wallet.id,
                change_amount=str(delta),
                error=str(e),
            )
            raise ConsistencyError(
                f"Balance change on wallet {wallet.id} was not persisted: {e}",
                entity_id=wallet.id,
            ) from e

        self._audit.emit(entry)
        return BalanceChange(
            wallet_id=wallet.id,
            previous_balance=wallet.balance,
            new_balance=new_balance,
            change_amount=delta,
            audit_entry_id=entry.entry_id,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def open_wallet(
        self,
        owner_id: str,
        name: str,
        wallet_type: WalletType = WalletType.MFS,
        balance: Decimal = ZERO,
        is_savings_wallet: bool = False,
        is_default: bool = False,
        description: str = "",
        display_order: Optional[int] = None,
    ) -> Wallet:
        """
        Create a wallet with its opening balance.

        The opening balance is recorded as initial_balance and in the
        wallet_created entry, not as an adjustment.
        """
        if balance < 0:
            raise InvalidAmountError("Opening balance cannot be negative")

        wallet = Wallet(
            owner_id=owner_id,
            name=name,
            type=wallet_type,
            balance=balance,
            initial_balance=balance,
            is_savings_wallet=is_savings_wallet,
            is_default=is_default,
            description=description,
            display_order=display_order,
        )
        entry = AuditEntryBuilder.wallet_created(wallet)
        wallet = await self._storage.create_wallet(wallet, entry)
        self._audit.emit(entry)

        await self._enforce_exclusive_flags(wallet)
        return wallet

    async def update_wallet(
        self,
        owner_id: str,
        wallet_id: str,
        name: Optional[str] = None,
        wallet_type: Optional[WalletType] = None,
        description: Optional[str] = None,
        is_savings_wallet: Optional[bool] = None,
        is_default: Optional[bool] = None,
        display_order: Optional[int] = None,
    ) -> Wallet:
        """Change wallet metadata. The balance is never touched here."""
        wallet = await self.get_wallet(owner_id, wallet_id)
        requested = {
            "name": name,
            "type": wallet_type,
            "description": description,
            "is_savings_wallet": is_savings_wallet,
            "is_default": is_default,
            "display_order": display_order,
        }
        updates = {
            field: value for field, value in requested.items()
            if value is not None and getattr(wallet, field) != value
        }
        if not updates:
            return wallet

        updated = Wallet.model_validate({**wallet.model_dump(), **updates})
        entry = AuditEntryBuilder.wallet_updated(updated, sorted(updates))
        updated = await self._storage.update_wallet_details(updated, entry)
        self._audit.emit(entry)

        await self._enforce_exclusive_flags(updated)
        return updated

    async def close_wallet(self, owner_id: str, wallet_id: str) -> Wallet:
        """Delete a wallet, recording the balance it held."""
        async with self._locks[wallet_id]:
            wallet = await self.get_wallet(owner_id, wallet_id)
            entry = AuditEntryBuilder.wallet_deleted(wallet)
            if not await self._storage.delete_wallet(owner_id, wallet_id, entry):
                raise WalletNotFoundError(wallet_id)
        self._audit.emit(entry)
        self._locks.pop(wallet_id, None)
        return wallet

    async def _enforce_exclusive_flags(self, wallet: Wallet) -> None:
        """At most one savings wallet and one default wallet per owner."""
        for flag in ("is_savings_wallet", "is_default"):
            if getattr(wallet, flag):
                await self._storage.clear_flag(wallet.owner_id, flag, except_wallet_id=wallet.id)
