"""
cnsync - block synchronization and transaction scanning for CryptoNote wallets.
"""

__version__ = "0.1.0"

from cnsync.backends.base import Daemon, DaemonError
from cnsync.checkpoints import CheckpointTracker
from cnsync.errors import (
    CheckpointOrderError,
    DaemonNotConfiguredError,
    ForkTooDeepError,
    KeyManagerNotAttachedError,
    SyncError,
    UnexpectedBlockHeightError,
)
from cnsync.keys import KeyManager, SubWallet, SubWallets, SyncContext
from cnsync.scanner import TransactionScanner
from cnsync.synchronizer import SyncResult, WalletSynchronizer

__all__ = [
    "CheckpointOrderError",
    "CheckpointTracker",
    "Daemon",
    "DaemonError",
    "DaemonNotConfiguredError",
    "ForkTooDeepError",
    "KeyManager",
    "KeyManagerNotAttachedError",
    "SubWallet",
    "SubWallets",
    "SyncContext",
    "SyncError",
    "SyncResult",
    "TransactionScanner",
    "UnexpectedBlockHeightError",
    "WalletSynchronizer",
]
