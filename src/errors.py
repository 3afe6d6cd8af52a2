class TransactionError(Exception):
    """
    A transaction was rejected by an account.
    The transaction is skipped and processing continues with the next one.
    """

    reason = "rejected"

    def __init__(self, transaction_id, client_id):
        self.transaction_id = transaction_id
        self.client_id = client_id
        super().__init__(f"tx {transaction_id} for client {client_id}: {self.reason}")


class DuplicateTransaction(TransactionError):
    reason = "transaction id already used"


class InsufficientFunds(TransactionError):
    reason = "insufficient available funds"


class UnknownTransaction(TransactionError):
    reason = "referenced transaction not found for this client"


class InvalidDisputeTarget(TransactionError):
    reason = "only deposits can be disputed"


class AlreadyDisputed(TransactionError):
    reason = "transaction already disputed"


class NotDisputed(TransactionError):
    reason = "transaction is not under dispute"


class AccountLocked(TransactionError):
    reason = "account is locked"


class TransactionCacheError(Exception):
    """Durable transaction storage failed. The run cannot continue."""


class CacheWriteError(TransactionCacheError):
    pass


class CacheReadError(TransactionCacheError):
    pass
