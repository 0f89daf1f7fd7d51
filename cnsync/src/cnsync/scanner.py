"""
Transaction scanning.

Turns raw transactions into ledger changes for the wallet. Amounts are signed
per owner: outputs received add to the owner's transfer, inputs spent
subtract from it. The fee is always computed from the unsigned input and
output sums of the whole transaction, whoever owns them.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from cnsync.keys import SyncContext
from cnsync.models import (
    Block,
    KeyInput,
    RawCoinbaseTransaction,
    RawTransaction,
    Transaction,
    TransactionData,
    Transfers,
)


class TransactionScanner:
    """Extracts the wallet's transfers from raw transactions.

    All scanning methods require an attached key manager.
    """

    def __init__(self, context: SyncContext, scan_coinbase_transactions: bool = True):
        self.context = context
        self.scan_coinbase_transactions = scan_coinbase_transactions

    def scan_inputs(
        self,
        key_inputs: Sequence[KeyInput],
        transfers: Transfers,
        tx_data: TransactionData,
    ) -> tuple[int, Transfers, TransactionData]:
        """
        Find the inputs spending our outputs.

        Returns:
            Tuple of (sum of all input amounts, transfers, tx_data)
        """
        key_manager = self.context.require_key_manager()
        sum_of_inputs = 0

        for key_input in key_inputs:
            sum_of_inputs += key_input.amount

            found, owner = key_manager.owner_of_key_image(key_input.key_image)
            if found:
                transfers.add(owner, -key_input.amount)
                tx_data.key_images_to_mark_spent.append((owner, key_input.key_image))

        return sum_of_inputs, transfers, tx_data

    def scan_outputs(
        self,
        raw_tx: RawCoinbaseTransaction,
        transfers: Transfers,
        tx_data: TransactionData,
    ) -> tuple[int, Transfers, TransactionData]:
        """
        Find the outputs paying to one of our spend keys.

        Returns:
            Tuple of (sum of all output amounts, transfers, tx_data)
        """
        key_manager = self.context.require_key_manager()
        view_key = self.context.view_key()
        sum_of_outputs = 0

        for output_index, output in enumerate(raw_tx.key_outputs):
            sum_of_outputs += output.amount

            found, owner = key_manager.derive_output_owner(
                raw_tx.tx_public_key, output_index, output.key, view_key
            )
            if found:
                transfers.add(owner, output.amount)

        return sum_of_outputs, transfers, tx_data

    def scan_transaction(
        self,
        raw_tx: RawTransaction,
        block_timestamp: int,
        block_height: int,
        tx_data: TransactionData | None = None,
    ) -> TransactionData:
        if tx_data is None:
            tx_data = TransactionData()

        transfers = Transfers()
        sum_of_inputs, transfers, tx_data = self.scan_inputs(raw_tx.key_inputs, transfers, tx_data)
        sum_of_outputs, transfers, tx_data = self.scan_outputs(raw_tx, transfers, tx_data)

        if transfers:
            tx = Transaction(
                transfers=transfers.to_dict(),
                hash=raw_tx.hash,
                fee=sum_of_inputs - sum_of_outputs,
                timestamp=block_timestamp,
                block_height=block_height,
                payment_id=raw_tx.payment_id,
                unlock_time=raw_tx.unlock_time,
                is_coinbase=False,
            )
            tx_data.transactions_to_add.append(tx)
            logger.debug(f"Found transaction {raw_tx.hash[:16]}... at height {block_height}")

        return tx_data

    def scan_coinbase(
        self,
        raw_tx: RawCoinbaseTransaction,
        block_timestamp: int,
        block_height: int,
        tx_data: TransactionData | None = None,
    ) -> TransactionData:
        if tx_data is None:
            tx_data = TransactionData()

        transfers = Transfers()
        _, transfers, tx_data = self.scan_outputs(raw_tx, transfers, tx_data)

        if transfers:
            # Coinbase transactions mint value: no fee, and no payment ID by protocol rule
            tx = Transaction(
                transfers=transfers.to_dict(),
                hash=raw_tx.hash,
                fee=0,
                timestamp=block_timestamp,
                block_height=block_height,
                payment_id="",
                unlock_time=raw_tx.unlock_time,
                is_coinbase=True,
            )
            tx_data.transactions_to_add.append(tx)
            logger.debug(
                f"Found coinbase transaction {raw_tx.hash[:16]}... at height {block_height}"
            )

        return tx_data

    def scan_block(self, block: Block, tx_data: TransactionData | None = None) -> TransactionData:
        """Scan the coinbase, then every transaction of a block in order."""
        if tx_data is None:
            tx_data = TransactionData()

        if self.scan_coinbase_transactions and block.coinbase_transaction is not None:
            self.scan_coinbase(
                block.coinbase_transaction, block.block_timestamp, block.block_height, tx_data
            )

        for raw_tx in block.transactions:
            self.scan_transaction(raw_tx, block.block_timestamp, block.block_height, tx_data)

        return tx_data
