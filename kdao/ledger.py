"""
Value ledger capability and in-memory reference token.

The engines never hold balances themselves: every movement of value goes
through a `ValueLedger`. A transfer that cannot be honoured returns False and
the calling engine raises TransferFailedError.

`InMemoryLedger` mirrors ERC-20 semantics (balanceOf, transfer, approve,
transferFrom, totalSupply) and takes part in host transactions through
`snapshot` / `restore`, so a failed operation also undoes the ledger moves it
already made.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Tuple, runtime_checkable

from .exceptions import InvalidInputError
from .logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ValueLedger(Protocol):
    """Balance / transfer capability consumed by the engines."""

    def balance_of(self, account: str) -> int:
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        ...

    def total_supply(self) -> int:
        ...


@dataclass(frozen=True)
class TransferEvent:
    """Emitted on every successful transfer."""
    sender: str
    recipient: str
    amount: int
    spender: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Transfer",
            "from": self.sender,
            "to": self.recipient,
            "amount": str(self.amount),
            "spender": self.spender,
            "timestamp": self.timestamp,
        }


class InMemoryLedger:
    """
    Fungible token held in process memory.

    Args:
        symbol: Ticker used in log lines
        initial_balances: account → amount minted at construction
    """

    def __init__(self, symbol: str = "KDAO", initial_balances: Dict[str, int] = None):
        if not symbol:
            raise InvalidInputError("Token symbol cannot be empty")
        self.symbol = symbol
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0
        self._frozen = False
        self._events: List[TransferEvent] = []
        for account, amount in (initial_balances or {}).items():
            self.mint(account, amount)

    # ── Views ─────────────────────────────────────────────────────────

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def total_supply(self) -> int:
        return self._total_supply

    @property
    def events(self) -> List[TransferEvent]:
        return list(self._events)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # ── Supply ────────────────────────────────────────────────────────

    def mint(self, account: str, amount: int):
        if amount < 0:
            raise InvalidInputError("Mint amount cannot be negative")
        self._balances[account] = self._balances.get(account, 0) + amount
        self._total_supply += amount

    def freeze(self):
        """Reject every transfer until `unfreeze`."""
        self._frozen = True

    def unfreeze(self):
        self._frozen = False

    # ── ERC-20 style operations ───────────────────────────────────────

    def approve(self, owner: str, spender: str, amount: int):
        if amount < 0:
            raise InvalidInputError("Allowance amount cannot be negative")
        self._allowances[(owner, spender)] = amount

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if self._frozen or amount < 0:
            return False
        balance = self.balance_of(sender)
        if balance < amount:
            logger.debug(f"Transfer rejected: {sender} balance {balance} < {amount} {self.symbol}")
            return False
        self._move(sender, recipient, amount)
        self._events.append(TransferEvent(sender, recipient, amount))
        return True

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        if self._frozen or amount < 0:
            return False
        allowed = self.allowance(owner, spender)
        if allowed < amount or self.balance_of(owner) < amount:
            logger.debug(
                f"TransferFrom rejected: {spender} moving {amount} {self.symbol} "
                f"from {owner} (allowance={allowed}, balance={self.balance_of(owner)})"
            )
            return False
        self._allowances[(owner, spender)] = allowed - amount
        self._move(owner, recipient, amount)
        self._events.append(TransferEvent(owner, recipient, amount, spender=spender))
        return True

    def _move(self, sender: str, recipient: str, amount: int):
        self._balances[sender] = self.balance_of(sender) - amount
        self._balances[recipient] = self.balance_of(recipient) + amount

    # ── Journal participation ─────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return {
            "balances": dict(self._balances),
            "allowances": dict(self._allowances),
            "total_supply": self._total_supply,
            "events": len(self._events),
        }

    def restore(self, snapshot: Dict[str, Any]):
        self._balances = snapshot["balances"]
        self._allowances = snapshot["allowances"]
        self._total_supply = snapshot["total_supply"]
        del self._events[snapshot["events"]:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "totalSupply": str(self._total_supply),
            "holders": len([b for b in self._balances.values() if b > 0]),
            "frozen": self._frozen,
        }

    def __repr__(self) -> str:
        return f"<InMemoryLedger {self.symbol} supply={self._total_supply}>"
