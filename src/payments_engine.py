import csv
import logging
import sys
from typing import Dict, Iterator, Optional

from models import Amount, ClientAccount, ClientId, Transaction, TransactionId, TransactionType
from settings import Settings, get_settings
from transaction_cache import TransactionCache
from transaction_processor import TransactionProcessor

logger = logging.getLogger(__name__)

AMOUNT_REQUIRED = {TransactionType.DEPOSIT, TransactionType.WITHDRAWAL}


class PaymentsEngine:
    """
    Reads a transaction CSV and applies it front to back.
    Deposits are kept in a disk-backed cache sized by the settings.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self.processor: Optional[TransactionProcessor] = None

    def process_file(self, filepath: str) -> Dict[ClientId, ClientAccount]:
        """Process CSV file and return final account states."""
        logger.info("Starting processing")

        with TransactionCache.from_settings(self._settings) as cache:
            self.processor = TransactionProcessor(cache)
            for transaction in self._read_transactions(filepath):
                self.processor.process_transaction(transaction)

        logger.info("Processing complete")

        stats = self.processor.stats
        print(f"Processed: {stats.processed}, Failed: {stats.failed}", file=sys.stderr)
        if stats.rejections:
            logger.info(f"Rejections by reason: {dict(stats.rejections)}")

        return {account.client_id: account for account in self.processor.accounts()}

    def _read_transactions(self, filepath: str) -> Iterator[Transaction]:
        """Read CSV rows as transactions, skipping malformed ones."""
        with open(filepath, "r", newline="") as f:
            reader = csv.DictReader(f, skipinitialspace=True)
            for row in reader:
                transaction = self._parse_csv_row(row)
                if transaction:
                    yield transaction

    def _parse_csv_row(self, row: Dict[str, str]) -> Optional[Transaction]:
        """Parse CSV row into Transaction."""
        try:
            normalized = {k.strip(): (v or "").strip() for k, v in row.items() if k is not None}

            transaction_type = TransactionType(normalized["type"].lower())
            client_id = ClientId(int(normalized["client"]))
            transaction_id = TransactionId(int(normalized["tx"]))

            amount = None
            amount_str = normalized.get("amount", "")
            if amount_str:
                amount = Amount.from_str(amount_str)

            if transaction_type in AMOUNT_REQUIRED and (amount is None or not amount.is_positive()):
                raise ValueError(f"{transaction_type.value} needs a positive amount, got {amount_str!r}")

            return Transaction(
                transaction_type=transaction_type,
                client_id=client_id,
                transaction_id=transaction_id,
                amount=amount if transaction_type in AMOUNT_REQUIRED else None,
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to parse row {row}: {e}")
            return None
