import contextlib
import logging
import os
import tempfile
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, TypeAdapter

from errors import CacheReadError, CacheWriteError
from models import Amount, ClientId, StoredRecord, TransactionId, TransactionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class CacheKey:
    """Identifies the cache line a transaction id belongs to."""

    index: int


class FixedWidthPartitioner:
    """Maps contiguous runs of `line_size` transaction ids onto one cache line."""

    def __init__(self, line_size: int):
        if line_size < 1:
            raise ValueError(f"line_size must be at least 1, got {line_size}")
        self.line_size = line_size

    def __call__(self, transaction_id: TransactionId) -> CacheKey:
        return CacheKey(transaction_id.value // self.line_size)


class LowestKeysFirstEviction:
    """
    Spill the lines holding the oldest transaction ids first.
    Disputes tend to reference recent deposits, so recent lines stay in memory.
    The line touched by the current call goes last, only when nothing else is left.
    """

    def select(self, line_sizes: Dict[CacheKey, int], size: int, limit: int, protected: CacheKey) -> List[CacheKey]:
        victims = []
        for key in sorted(line_sizes):
            if size <= limit:
                break
            if key == protected:
                continue
            victims.append(key)
            size -= line_sizes[key]
        if size > limit and protected in line_sizes:
            victims.append(protected)
        return victims


class _LineEntry(BaseModel):
    kind: TransactionType
    client: int
    amount: Decimal

    @classmethod
    def from_record(cls, record: StoredRecord) -> "_LineEntry":
        return cls(kind=record.kind, client=record.client_id.value, amount=record.amount.value)

    def to_record(self) -> StoredRecord:
        return StoredRecord(kind=self.kind, client_id=ClientId(self.client), amount=Amount(self.amount))


_LINE_ADAPTER = TypeAdapter(Dict[int, _LineEntry])


class JsonLineBackend:
    """
    Stores each cache line as one JSON file named after its key.
    Without a directory, a temporary one is created and removed on close().
    """

    def __init__(self, directory: Optional[Path] = None):
        self._temp_dir = None
        if directory is None:
            try:
                self._temp_dir = tempfile.TemporaryDirectory(prefix="transaction_cache_")
            except OSError as e:
                raise CacheWriteError(f"Could not create a temporary cache dir: {e}") from e
            directory = self._temp_dir.name
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheWriteError(f"Could not create cache dir {self.directory}: {e}") from e

    def path_for(self, key: CacheKey) -> Path:
        return self.directory / f"{key.index}.json"

    def exists(self, key: CacheKey) -> bool:
        return self.path_for(key).exists()

    def load(self, key: CacheKey) -> Optional[Dict[TransactionId, StoredRecord]]:
        """Read a cache line back. Returns None if the line was never written."""
        path = self.path_for(key)
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheReadError(f"Could not read cache line {path}: {e}") from e

        try:
            entries = _LINE_ADAPTER.validate_json(payload)
            return {TransactionId(transaction_id): entry.to_record() for transaction_id, entry in entries.items()}
        except ValueError as e:
            raise CacheReadError(f"Corrupted cache line {path}: {e}") from e

    def store(self, key: CacheKey, records: Dict[TransactionId, StoredRecord]) -> None:
        """Write a whole cache line. The file is replaced atomically."""
        path = self.path_for(key)
        payload = _LINE_ADAPTER.dump_json(
            {transaction_id.value: _LineEntry.from_record(record) for transaction_id, record in records.items()}
        )

        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key.index}.", suffix=".tmp")
        except OSError as e:
            raise CacheWriteError(f"Could not write cache line {path}: {e}") from e

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                Path(tmp_name).unlink(missing_ok=True)
            raise CacheWriteError(f"Could not write cache line {path}: {e}") from e

    def close(self) -> None:
        if self._temp_dir is not None:
            self._temp_dir.cleanup()
            self._temp_dir = None


@dataclass
class CacheLine:
    records: Dict[TransactionId, StoredRecord] = field(default_factory=dict)
    # holds everything the backend has for this key
    complete: bool = True
    # has records the backend does not have yet
    dirty: bool = False


class TransactionCache:
    """
    Memory-bounded store of deposits, keyed by transaction id.

    Records live in cache lines. Whenever more than `size_limit` records are
    in memory, whole lines are spilled to the backend until they fit again.
    A lookup on a spilled line loads it back first, so get() finds every
    record ever put().
    """

    def __init__(
        self,
        size_limit: int,
        partitioner: FixedWidthPartitioner,
        backend: JsonLineBackend,
        eviction: Optional[LowestKeysFirstEviction] = None,
    ):
        if size_limit < 1:
            raise ValueError(f"size_limit must be at least 1, got {size_limit}")
        self._size_limit = size_limit
        self._partition = partitioner
        self._backend = backend
        self._eviction = eviction or LowestKeysFirstEviction()
        self._lines: Dict[CacheKey, CacheLine] = {}
        self._size = 0

    @classmethod
    def from_settings(cls, settings) -> "TransactionCache":
        return cls(
            size_limit=settings.cache_size_limit,
            partitioner=FixedWidthPartitioner(settings.cache_line_size),
            backend=JsonLineBackend(settings.cache_dir),
        )

    def __len__(self) -> int:
        return self._size

    def __contains__(self, transaction_id: TransactionId) -> bool:
        return self.get(transaction_id) is not None

    def __enter__(self) -> "TransactionCache":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def resident_keys(self) -> List[CacheKey]:
        return sorted(self._lines)

    def put(self, transaction_id: TransactionId, record: StoredRecord) -> None:
        key = self._partition(transaction_id)
        line = self._lines.get(key)
        if line is None:
            line = CacheLine(complete=not self._backend.exists(key))
            self._lines[key] = line

        if transaction_id in line.records:
            raise ValueError(f"Transaction {transaction_id} is already stored")

        line.records[transaction_id] = record
        line.dirty = True
        self._size += 1
        self._evict(protected=key)

    def get(self, transaction_id: TransactionId) -> Optional[StoredRecord]:
        key = self._partition(transaction_id)
        line = self._lines.get(key)
        if line is None or not line.complete:
            line = self._load(key, line)
            if line is None:
                return None

        record = line.records.get(transaction_id)
        self._evict(protected=key)
        return record

    def close(self) -> None:
        self._lines.clear()
        self._size = 0
        self._backend.close()

    def _load(self, key: CacheKey, line: Optional[CacheLine]) -> Optional[CacheLine]:
        stored = self._backend.load(key)
        if stored is None:
            if line is not None:
                line.complete = True
            return line

        if line is None:
            line = CacheLine()
            self._lines[key] = line

        before = len(line.records)
        for transaction_id, record in stored.items():
            line.records.setdefault(transaction_id, record)
        line.complete = True
        self._size += len(line.records) - before
        logger.debug(f"Loaded cache line {key.index} ({len(stored)} records)")
        return line

    def _evict(self, protected: CacheKey) -> None:
        if self._size <= self._size_limit:
            return

        line_sizes = {key: len(line.records) for key, line in self._lines.items()}
        for key in self._eviction.select(line_sizes, self._size, self._size_limit, protected):
            self._spill(key)

    def _spill(self, key: CacheKey) -> None:
        line = self._lines[key]
        if line.dirty:
            if not line.complete:
                # merge what an earlier spill wrote before replacing the file
                self._load(key, line)
            self._backend.store(key, line.records)

        del self._lines[key]
        self._size -= len(line.records)
        logger.debug(f"Spilled cache line {key.index} ({len(line.records)} records)")
