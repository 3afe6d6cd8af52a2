import logging
from typing import Dict, Iterator

from errors import DuplicateTransaction, TransactionError
from models import ClientAccount, ClientId, ProcessingResult, ProcessingStats, StoredRecord, Transaction, TransactionType
from transaction_cache import TransactionCache

logger = logging.getLogger(__name__)


class TransactionProcessor:
    """
    Applies transactions to client accounts, strictly one at a time.
    Deposits are kept in the transaction cache so later disputes can find them.

    Rejected transactions are logged, counted and skipped. Cache failures
    (TransactionCacheError) are not caught and end the run.
    """

    def __init__(self, cache: TransactionCache):
        self._cache = cache
        self._accounts: Dict[ClientId, ClientAccount] = {}
        self.stats = ProcessingStats()

    def get_or_create_account(self, client_id: ClientId) -> ClientAccount:
        """Get existing account or create new one."""
        if client_id not in self._accounts:
            self._accounts[client_id] = ClientAccount(client_id=client_id)
        return self._accounts[client_id]

    def process_transaction(self, transaction: Transaction) -> ProcessingResult:
        """
        Process a single transaction.

        Returns:
            SUCCESS: Applied to the account
            FAILED: Rejected, the account is unchanged
        """
        account = self.get_or_create_account(transaction.client_id)

        try:
            match transaction.transaction_type:
                case TransactionType.DEPOSIT:
                    self._handle_deposit(account, transaction)
                case TransactionType.WITHDRAWAL:
                    self._handle_withdrawal(account, transaction)
                case TransactionType.DISPUTE:
                    account.dispute(transaction.transaction_id, self._cache.get(transaction.transaction_id))
                case TransactionType.RESOLVE:
                    account.resolve(transaction.transaction_id, self._cache.get(transaction.transaction_id))
                case TransactionType.CHARGEBACK:
                    account.chargeback(transaction.transaction_id, self._cache.get(transaction.transaction_id))
        except TransactionError as e:
            logger.warning(f"Rejected {transaction}: {e.reason}")
            self.stats.record_failure(e)
            return ProcessingResult.FAILED

        self.stats.record_success()
        return ProcessingResult.SUCCESS

    def _handle_deposit(self, account: ClientAccount, transaction: Transaction) -> None:
        account.ensure_active(transaction.transaction_id)
        # catches the id being reused by another client
        if transaction.transaction_id in self._cache:
            raise DuplicateTransaction(transaction.transaction_id, transaction.client_id)

        account.deposit(transaction.transaction_id, transaction.amount)
        self._cache.put(transaction.transaction_id, StoredRecord.from_transaction(transaction))

    def _handle_withdrawal(self, account: ClientAccount, transaction: Transaction) -> None:
        account.ensure_active(transaction.transaction_id)
        if transaction.transaction_id in self._cache:
            raise DuplicateTransaction(transaction.transaction_id, transaction.client_id)

        account.withdraw(transaction.transaction_id, transaction.amount)

    def accounts(self) -> Iterator[ClientAccount]:
        """Yield every known account, ordered by client id."""
        for client_id in sorted(self._accounts):
            yield self._accounts[client_id]
