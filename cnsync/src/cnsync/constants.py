"""
Synchronization constants shared across cnsync modules.
"""

from __future__ import annotations

# Number of most recent block hashes kept for fork detection.
# Bounds the deepest fork the wallet can recover from.
LAST_KNOWN_BLOCK_HASHES_SIZE = 100

# Every block whose height is a multiple of this is kept as a sparse checkpoint
BLOCK_HASH_CHECKPOINTS_INTERVAL = 5000

# Blocks requested from the daemon per sync call
BLOCKS_PER_DAEMON_REQUEST = 100

# Unlock times below this are block heights, at or above it Unix timestamps
MAX_BLOCK_NUMBER = 500_000_000

# Tolerances when deciding whether a locked transaction has unlocked
LOCKED_TX_ALLOWED_DELTA_BLOCKS = 1
LOCKED_TX_ALLOWED_DELTA_SECONDS = 30  # one block target
