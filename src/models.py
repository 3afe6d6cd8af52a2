from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Set

from errors import (
    AccountLocked,
    AlreadyDisputed,
    DuplicateTransaction,
    InsufficientFunds,
    InvalidDisputeTarget,
    NotDisputed,
    TransactionError,
    UnknownTransaction,
)

MAX_CLIENT_ID = 0xFFFF
MAX_TRANSACTION_ID = 0xFFFFFFFF
AMOUNT_PRECISION = 4


def _check_unsigned(name: str, value, upper: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} expects an int, got {type(value).__name__}")
    if not 0 <= value <= upper:
        raise ValueError(f"{name} out of range: {value}")


@dataclass(frozen=True, order=True)
class ClientId:
    value: int

    def __post_init__(self):
        _check_unsigned("ClientId", self.value, MAX_CLIENT_ID)

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True, order=True)
class TransactionId:
    value: int

    def __post_init__(self):
        _check_unsigned("TransactionId", self.value, MAX_TRANSACTION_ID)

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True, order=True)
class Amount:
    """
    Exact fixed-point amount with at most 4 decimal places.
    Arithmetic and ordering only work between Amounts.
    """

    value: Decimal

    def __post_init__(self):
        if not isinstance(self.value, Decimal):
            raise TypeError(f"Amount expects a Decimal, got {type(self.value).__name__}")
        if not self.value.is_finite():
            raise ValueError(f"Amount must be finite, got {self.value}")
        if -self.value.as_tuple().exponent > AMOUNT_PRECISION:
            raise ValueError(f"Amount {self.value} has more than {AMOUNT_PRECISION} decimal places")

    @classmethod
    def from_str(cls, text: str) -> "Amount":
        try:
            return cls(Decimal(text))
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {text!r}") from None

    @classmethod
    def zero(cls) -> "Amount":
        return cls(Decimal("0"))

    def __add__(self, other):
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.value + other.value)

    def __sub__(self, other):
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.value - other.value)

    def is_positive(self) -> bool:
        return self.value > 0

    def __str__(self) -> str:
        # 100 normalizes to 1E+2, the format spec brings back plain notation
        return f"{self.value.normalize():f}"


class TransactionType(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    DISPUTE = "dispute"
    RESOLVE = "resolve"
    CHARGEBACK = "chargeback"


class ProcessingResult(Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class Transaction:
    transaction_type: TransactionType
    client_id: ClientId
    transaction_id: TransactionId
    amount: Optional[Amount] = None

    def __repr__(self) -> str:
        return f"Transaction({self.transaction_type.value}, client={self.client_id}, tx={self.transaction_id}, amount={self.amount})"


@dataclass(frozen=True)
class StoredRecord:
    """The part of a deposit kept around for later disputes."""

    kind: TransactionType
    client_id: ClientId
    amount: Amount

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "StoredRecord":
        return cls(kind=transaction.transaction_type, client_id=transaction.client_id, amount=transaction.amount)


@dataclass
class ClientAccount:
    """
    Balances and dispute state of one client.

    Every operation either applies fully or raises a TransactionError
    without touching the account. Once locked, the account never changes again.
    """

    client_id: ClientId
    available: Amount = field(default_factory=Amount.zero)
    held: Amount = field(default_factory=Amount.zero)
    locked: bool = False
    processed: Set[TransactionId] = field(default_factory=set, repr=False)
    disputed: Set[TransactionId] = field(default_factory=set, repr=False)

    @property
    def total(self) -> Amount:
        return self.available + self.held

    def ensure_active(self, transaction_id: TransactionId) -> None:
        if self.locked:
            raise AccountLocked(transaction_id, self.client_id)

    def deposit(self, transaction_id: TransactionId, amount: Amount) -> None:
        self.ensure_active(transaction_id)
        if transaction_id in self.processed:
            raise DuplicateTransaction(transaction_id, self.client_id)

        self.available += amount
        self.processed.add(transaction_id)

    def withdraw(self, transaction_id: TransactionId, amount: Amount) -> None:
        self.ensure_active(transaction_id)
        if transaction_id in self.processed:
            raise DuplicateTransaction(transaction_id, self.client_id)
        if self.available < amount:
            raise InsufficientFunds(transaction_id, self.client_id)

        self.available -= amount
        self.processed.add(transaction_id)

    def dispute(self, transaction_id: TransactionId, record: Optional[StoredRecord]) -> None:
        self.ensure_active(transaction_id)
        if record is None:
            # Withdrawals are processed here but never stored
            if transaction_id in self.processed:
                raise InvalidDisputeTarget(transaction_id, self.client_id)
            raise UnknownTransaction(transaction_id, self.client_id)
        if record.client_id != self.client_id:
            raise UnknownTransaction(transaction_id, self.client_id)
        if record.kind != TransactionType.DEPOSIT:
            raise InvalidDisputeTarget(transaction_id, self.client_id)
        if transaction_id in self.disputed:
            raise AlreadyDisputed(transaction_id, self.client_id)

        self.available -= record.amount
        self.held += record.amount
        self.disputed.add(transaction_id)

    def resolve(self, transaction_id: TransactionId, record: Optional[StoredRecord]) -> None:
        self.ensure_active(transaction_id)
        if transaction_id not in self.disputed:
            raise NotDisputed(transaction_id, self.client_id)

        self.held -= record.amount
        self.available += record.amount
        self.disputed.discard(transaction_id)

    def chargeback(self, transaction_id: TransactionId, record: Optional[StoredRecord]) -> None:
        self.ensure_active(transaction_id)
        if transaction_id not in self.disputed:
            raise NotDisputed(transaction_id, self.client_id)

        self.held -= record.amount
        self.disputed.discard(transaction_id)
        self.locked = True


class ProcessingStats:
    """Counters for processed and rejected transactions."""

    def __init__(self):
        self.processed = 0
        self.failed = 0
        self.rejections: Counter = Counter()

    def record_success(self):
        self.processed += 1

    def record_failure(self, error: TransactionError):
        self.failed += 1
        self.rejections[type(error).__name__] += 1
