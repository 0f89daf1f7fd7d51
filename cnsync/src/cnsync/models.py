"""
Core data models using Pydantic for validation and serialization.

Raw chain data (blocks, transactions, inputs, outputs) is parsed from the
daemon's wallet sync payload and is immutable once fetched. ``Transaction``
and ``TransactionData`` are produced by the scanner for the caller's ledger.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

_RAW_MODEL_CONFIG = {"frozen": True, "populate_by_name": True}


class KeyInput(BaseModel):
    """Input spending a previous output, identified by its key image."""

    amount: int = Field(..., ge=0)
    key_image: str = Field(..., alias="k_image", min_length=1)

    model_config = _RAW_MODEL_CONFIG


class KeyOutput(BaseModel):
    """Output paying to a one-time public key."""

    key: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0)

    model_config = _RAW_MODEL_CONFIG


class RawCoinbaseTransaction(BaseModel):
    hash: str = Field(..., min_length=1)
    tx_public_key: str = Field(default="", alias="txPublicKey")
    unlock_time: int = Field(default=0, ge=0, alias="unlockTime")
    key_outputs: list[KeyOutput] = Field(default_factory=list, alias="outputs")

    model_config = _RAW_MODEL_CONFIG


class RawTransaction(RawCoinbaseTransaction):
    payment_id: str = Field(default="", alias="paymentID")
    key_inputs: list[KeyInput] = Field(default_factory=list, alias="inputs")


class Block(BaseModel):
    """A block as returned by the daemon's wallet sync call."""

    block_hash: str = Field(..., alias="blockHash", min_length=1)
    block_height: int = Field(..., ge=0, alias="blockHeight")
    block_timestamp: int = Field(default=0, ge=0, alias="blockTimestamp")
    coinbase_transaction: RawCoinbaseTransaction | None = Field(default=None, alias="coinbaseTX")
    transactions: list[RawTransaction] = Field(default_factory=list)

    model_config = _RAW_MODEL_CONFIG


class DaemonInfo(BaseModel):
    """Snapshot of the daemon's chain state."""

    height: int = Field(..., ge=0)
    network_height: int = Field(default=0, ge=0)
    synced: bool = False
    # Timestamp of the daemon's top block, when the daemon reports one
    timestamp: int | None = None

    model_config = {"populate_by_name": True}


class Transfers:
    """
    Ordered mapping from owner (public spend key) to signed amount.

    The first ``add`` for an owner fixes its position; later adds for the same
    owner are summed into the existing entry.
    """

    def __init__(self) -> None:
        self._amounts: dict[str, int] = {}

    def add(self, owner: str, amount: int) -> None:
        self._amounts[owner] = self._amounts.get(owner, 0) + amount

    def get(self, owner: str) -> int:
        return self._amounts.get(owner, 0)

    def items(self) -> Iterator[tuple[str, int]]:
        return iter(self._amounts.items())

    @property
    def total(self) -> int:
        """Net amount across all owners."""
        return sum(self._amounts.values())

    def to_dict(self) -> dict[str, int]:
        return dict(self._amounts)

    def __contains__(self, owner: object) -> bool:
        return owner in self._amounts

    def __len__(self) -> int:
        return len(self._amounts)

    def __bool__(self) -> bool:
        return bool(self._amounts)

    def __repr__(self) -> str:
        return f"Transfers({self._amounts!r})"


class Transaction(BaseModel):
    """A transaction touching this wallet, as recorded in the ledger."""

    transfers: dict[str, int]
    hash: str
    fee: int
    timestamp: int
    block_height: int
    payment_id: str = ""
    unlock_time: int = 0
    is_coinbase: bool = False

    model_config = {"frozen": True}

    @property
    def total_amount(self) -> int:
        """Net effect of this transaction on the wallet."""
        return sum(self.transfers.values())


@dataclass
class TransactionData:
    """Ledger changes accumulated while scanning a batch of blocks.

    Attributes:
        transactions_to_add: New transactions for the ledger, in scan order.
        key_images_to_mark_spent: ``(owner, key_image)`` pairs spent by them.
    """

    transactions_to_add: list[Transaction] = field(default_factory=list)
    key_images_to_mark_spent: list[tuple[str, str]] = field(default_factory=list)

    def extend(self, other: TransactionData) -> None:
        """Append everything pending in ``other`` after our own entries."""
        self.transactions_to_add.extend(other.transactions_to_add)
        self.key_images_to_mark_spent.extend(other.key_images_to_mark_spent)

    def __bool__(self) -> bool:
        return bool(self.transactions_to_add or self.key_images_to_mark_spent)
