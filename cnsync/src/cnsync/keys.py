"""
Key-management interface consumed by the synchronizer.

The synchronizer never touches spend keys. It asks a ``KeyManager`` yes/no
questions about key images and outputs, and notifies it once when a
timestamp-based resume point is pinned to a block height.

``SubWallets`` is an in-memory reference implementation. The curve math for
output ownership (CryptoNote one-time key derivation) is injected as an
``OutputKeyUnderiver`` so this module carries no cryptography of its own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger
from pydantic import SecretStr

from cnsync.errors import KeyManagerNotAttachedError

# (tx_public_key, private_view_key, output_index, output_key) -> candidate public spend key
OutputKeyUnderiver = Callable[[str, str, int, str], str]


class KeyManager(ABC):
    """
    Abstract key-management component.
    Implementations own the private keys and decide what belongs to the wallet.
    """

    @abstractmethod
    def owner_of_key_image(self, key_image: str) -> tuple[bool, str]:
        """Return ``(True, public_spend_key)`` if the key image is ours.

        Must not change any state.
        """

    @abstractmethod
    def derive_output_owner(
        self,
        tx_public_key: str,
        output_index: int,
        output_key: str,
        private_view_key: str,
    ) -> tuple[bool, str]:
        """Return ``(True, public_spend_key)`` if the output pays one of our spend keys."""

    @abstractmethod
    def pin_timestamp_to_height(self, timestamp: int, height: int) -> None:
        """Convert timestamp-based sync bookkeeping to the given block height."""


class SyncContext:
    """
    Per-synchronizer key context.

    Holds the private view key and the key manager. The key manager is
    attached after construction (it is not serialized with the synchronizer);
    any operation that needs it before ``attach`` raises.
    """

    def __init__(self, private_view_key: str | SecretStr, key_manager: KeyManager | None = None):
        if isinstance(private_view_key, str):
            private_view_key = SecretStr(private_view_key)
        self.private_view_key = private_view_key
        self._key_manager = key_manager

    def attach(self, key_manager: KeyManager) -> None:
        self._key_manager = key_manager

    @property
    def is_attached(self) -> bool:
        return self._key_manager is not None

    @property
    def key_manager(self) -> KeyManager:
        return self.require_key_manager()

    def require_key_manager(self) -> KeyManager:
        if self._key_manager is None:
            raise KeyManagerNotAttachedError(
                "No key manager attached; call attach() before scanning or syncing"
            )
        return self._key_manager

    def view_key(self) -> str:
        return self.private_view_key.get_secret_value()

    def __repr__(self) -> str:
        return (
            f"SyncContext(private_view_key={self.private_view_key!r}, "
            f"attached={self.is_attached})"
        )


@dataclass
class SubWallet:
    """A single spend key tracked by the wallet.

    Attributes:
        public_spend_key: Hex public spend key, the owner identity in transfers.
        sync_start_height: Height this subwallet started receiving funds.
        sync_start_timestamp: Creation timestamp, 0 once converted to a height.
        key_images: Key images of outputs this subwallet can spend.
    """

    public_spend_key: str
    sync_start_height: int = 0
    sync_start_timestamp: int = 0
    key_images: set[str] = field(default_factory=set)


class SubWallets(KeyManager):
    """In-memory key manager over a set of subwallets."""

    def __init__(
        self,
        subwallets: list[SubWallet] | None = None,
        underiver: OutputKeyUnderiver | None = None,
    ):
        self.subwallets: dict[str, SubWallet] = {}
        self.underiver = underiver
        for subwallet in subwallets or []:
            self.add_subwallet(subwallet)

    def add_subwallet(self, subwallet: SubWallet) -> None:
        if subwallet.public_spend_key in self.subwallets:
            logger.warning(
                f"Subwallet {subwallet.public_spend_key[:16]}... already exists, updating"
            )
        self.subwallets[subwallet.public_spend_key] = subwallet

    def store_key_image(self, public_spend_key: str, key_image: str) -> None:
        """Remember a key image for an output received by ``public_spend_key``."""
        try:
            self.subwallets[public_spend_key].key_images.add(key_image)
        except KeyError:
            raise ValueError(f"Unknown subwallet {public_spend_key}") from None

    def owner_of_key_image(self, key_image: str) -> tuple[bool, str]:
        for public_spend_key, subwallet in self.subwallets.items():
            if key_image in subwallet.key_images:
                return True, public_spend_key
        return False, ""

    def derive_output_owner(
        self,
        tx_public_key: str,
        output_index: int,
        output_key: str,
        private_view_key: str,
    ) -> tuple[bool, str]:
        if self.underiver is None or not tx_public_key:
            return False, ""

        candidate = self.underiver(tx_public_key, private_view_key, output_index, output_key)
        if candidate in self.subwallets:
            return True, candidate
        return False, ""

    def pin_timestamp_to_height(self, timestamp: int, height: int) -> None:
        converted = 0
        for subwallet in self.subwallets.values():
            if subwallet.sync_start_timestamp != 0 and subwallet.sync_start_timestamp == timestamp:
                subwallet.sync_start_timestamp = 0
                subwallet.sync_start_height = height
                converted += 1

        logger.debug(
            f"Converted {converted} subwallet(s) from timestamp {timestamp} to height {height}"
        )
