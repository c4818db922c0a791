"""
Civitas audit journal.

Every state transition attempted against a component leaves a receipt:
what was asked, by whom, at which block, and whether it was applied.
Receipts are hash-chained (prev_hash -> entry_hash) so an edited,
reordered or dropped entry is detectable.

Two modes:

- in-memory (no ``base_dir``): the most recent ``retain`` receipts are
  kept; older ones are released and verification starts at the oldest
  receipt still held.
- persisted (``base_dir``): receipts are appended to
  ``<base_dir>/<YYYY-MM-DD>/<trace_id>.jsonl`` and nothing is kept in
  memory. The trace file is the chain.

Thread-safe: all mutable operations are protected by a reentrant lock.
For cross-process safety each append holds an exclusive ``fcntl.flock``
on the trace file while it reads the chain tail and writes the new line,
so several processes can share one trace.
"""
from __future__ import annotations

import json
import os
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from civitas.config import ENV_TRACE_ID, civitas_home
from civitas.digest import canonical_hash

# Advisory file locking -- POSIX only, no-op on Windows
try:
    import fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False

GENESIS_HASH = "0" * 64

# Receipts held by an in-memory journal before the oldest are released
DEFAULT_RETAIN = 10_000

_TAIL_CHUNK = 4096

# Chain-check error codes
E_CHAIN_BROKEN = "E_CHAIN_BROKEN"
E_HASH_MISMATCH = "E_HASH_MISMATCH"
E_SEQ_GAP = "E_SEQ_GAP"
E_MISSING_FIELD = "E_MISSING_FIELD"

_REQUIRED_FIELDS = ("receipt_id", "type", "seq", "prev_hash", "entry_hash")


def generate_trace_id() -> str:
    """Generate a unique trace ID for a session."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"trace_{ts}_{uuid.uuid4().hex[:8]}"


def _hash_material(entry: Dict[str, Any]) -> Dict[str, Any]:
    # Store metadata (underscore keys) and the hash itself are not covered.
    return {k: v for k, v in entry.items() if k != "entry_hash" and not k.startswith("_")}


def _strip_store_fields(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in entry.items() if not k.startswith("_")}


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes, retrying on short writes."""
    mv = memoryview(data)
    while mv:
        n = os.write(fd, mv)
        mv = mv[n:]


def _last_entry(fd: int) -> Optional[Dict[str, Any]]:
    """Parse the final JSONL line of an open trace file, reading backwards."""
    pos = os.lseek(fd, 0, os.SEEK_END)
    buf = b""
    while pos > 0:
        step = min(_TAIL_CHUNK, pos)
        pos -= step
        os.lseek(fd, pos, os.SEEK_SET)
        buf = os.read(fd, step) + buf
        body = buf.rstrip(b"\n")
        newline = body.rfind(b"\n")
        if newline != -1:
            return json.loads(body[newline + 1:])
    body = buf.rstrip(b"\n")
    return json.loads(body) if body else None


@dataclass
class ChainError:
    """A single chain verification error."""

    code: str
    message: str
    index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.index is not None:
            d["index"] = self.index
        return d


@dataclass
class ChainCheck:
    """Aggregate chain verification result."""

    passed: bool
    errors: List[ChainError] = field(default_factory=list)
    count: int = 0
    head_hash: str = GENESIS_HASH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "errors": [e.to_dict() for e in self.errors],
            "count": self.count,
            "head_hash": self.head_hash,
        }


def verify_entries(
    entries: List[Dict[str, Any]],
    start_seq: int = 0,
    start_hash: str = GENESIS_HASH,
) -> ChainCheck:
    """
    Check that ``entries`` form an unbroken hash chain.

    A full trace starts at seq 0 on the genesis hash. A retained window
    of a longer chain passes its first receipt's seq and prev_hash as
    ``start_seq`` and ``start_hash``.
    """
    errors: List[ChainError] = []
    prev = start_hash
    for index, entry in enumerate(entries):
        missing = [f for f in _REQUIRED_FIELDS if f not in entry]
        if missing:
            errors.append(ChainError(E_MISSING_FIELD, f"Missing fields: {', '.join(missing)}", index))
            prev = entry.get("entry_hash", prev)
            continue
        expected_seq = start_seq + index
        if entry["seq"] != expected_seq:
            errors.append(ChainError(E_SEQ_GAP, f"Expected seq {expected_seq}, found {entry['seq']}", index))
        if entry["prev_hash"] != prev:
            errors.append(ChainError(E_CHAIN_BROKEN, "prev_hash does not match previous entry", index))
        actual = canonical_hash(_hash_material(entry))
        if actual != entry["entry_hash"]:
            errors.append(ChainError(E_HASH_MISMATCH, "entry_hash does not match content", index))
        prev = entry["entry_hash"]
    return ChainCheck(passed=not errors, errors=errors, count=len(entries), head_hash=prev)


class Journal:
    """
    Hash-chained receipt journal.

    In-memory by default, holding the last ``retain`` receipts (None for
    no limit). Pass ``base_dir`` to persist every receipt as a JSONL line
    instead; reads then go to the trace file.
    """

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        trace_id: Optional[str] = None,
        retain: Optional[int] = DEFAULT_RETAIN,
    ):
        if retain is not None and retain <= 0:
            raise ValueError(f"retain must be positive, got {retain}")
        self.base_dir = Path(base_dir) if base_dir is not None else None
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=retain)
        self._seq = 0
        self._head = GENESIS_HASH
        self._trace_id = trace_id or generate_trace_id()
        self._current_file: Optional[Path] = None
        self._lock = threading.RLock()

    @property
    def persisted(self) -> bool:
        return self.base_dir is not None

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @property
    def trace_file(self) -> Optional[Path]:
        """Current trace file path, if persisting."""
        return self._current_file

    @property
    def head_hash(self) -> str:
        with self._lock:
            if not self.persisted:
                return self._head
            last = self._read_tail()
            return last["entry_hash"] if last is not None else GENESIS_HASH

    def __len__(self) -> int:
        """Receipts in the whole chain, including any no longer retained."""
        with self._lock:
            if not self.persisted:
                return self._seq
            last = self._read_tail()
            return last["seq"] + 1 if last is not None else 0

    @property
    def entries(self) -> List[Dict[str, Any]]:
        """Copies of the available receipts, oldest first."""
        with self._lock:
            if self.persisted:
                return [_strip_store_fields(e) for e in self.read_trace(self._trace_id)]
            return [dict(e) for e in self._entries]

    def of_type(self, type: str) -> List[Dict[str, Any]]:
        return [e for e in self.entries if e["type"] == type]

    def _trace_path(self) -> Path:
        assert self.base_dir is not None
        if self._current_file is None:
            existing = self._find_trace_file(self._trace_id)
            if existing is not None:
                self._current_file = existing
            else:
                today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
                day_dir = self.base_dir / today
                day_dir.mkdir(parents=True, exist_ok=True)
                self._current_file = day_dir / f"{self._trace_id}.jsonl"
        return self._current_file

    def _find_trace_file(self, trace_id: str) -> Optional[Path]:
        """Find an existing trace file across all date directories."""
        if self.base_dir is None or not self.base_dir.exists():
            return None
        for day_dir in self.base_dir.iterdir():
            if not day_dir.is_dir():
                continue
            trace_file = day_dir / f"{trace_id}.jsonl"
            if trace_file.exists():
                return trace_file
        return None

    def _read_tail(self) -> Optional[Dict[str, Any]]:
        trace_file = self._find_trace_file(self._trace_id)
        if trace_file is None:
            return None
        fd = os.open(str(trace_file), os.O_RDONLY)
        try:
            return _last_entry(fd)
        finally:
            os.close(fd)

    def _seal(
        self,
        type: str,
        data: Optional[Dict[str, Any]],
        block: int,
        status: str,
        seq: int,
        prev_hash: str,
    ) -> Dict[str, Any]:
        receipt: Dict[str, Any] = {
            "receipt_id": f"r_{uuid.uuid4().hex[:12]}",
            "type": type,
            "seq": seq,
            "block": block,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status": status,
        }
        if data:
            receipt.update(data)
        receipt["prev_hash"] = prev_hash
        receipt["entry_hash"] = canonical_hash(_hash_material(receipt))
        return receipt

    def _append_persisted(
        self,
        type: str,
        data: Optional[Dict[str, Any]],
        block: int,
        status: str,
    ) -> Dict[str, Any]:
        """Chain onto the file's last line and append. Lock must be held by caller.

        The tail read and the write happen under one exclusive flock, so
        another process appending to the same trace cannot fork the chain.
        """
        fd = os.open(
            str(self._trace_path()),
            os.O_RDWR | os.O_APPEND | os.O_CREAT,
            0o644,
        )
        try:
            if _HAS_FCNTL:
                fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                last = _last_entry(fd)
                seq = last["seq"] + 1 if last is not None else 0
                prev = last["entry_hash"] if last is not None else GENESIS_HASH
                receipt = self._seal(type, data, block, status, seq, prev)
                record = dict(receipt)
                record["_trace_id"] = self._trace_id
                record["_stored_at"] = datetime.now(timezone.utc).isoformat()
                _write_all(fd, (json.dumps(record, default=str) + "\n").encode("utf-8"))
            finally:
                if _HAS_FCNTL:
                    fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        return receipt

    def emit(
        self,
        type: str,
        data: Optional[Dict[str, Any]] = None,
        *,
        block: int,
        status: str = "ok",
    ) -> Dict[str, Any]:
        """
        Append a receipt and return it.

        ``status`` is "ok" for applied transitions, "rejected" for refused
        ones and "committed" for failures reported after a write.
        """
        with self._lock:
            if self.persisted:
                return dict(self._append_persisted(type, data, block, status))
            receipt = self._seal(type, data, block, status, self._seq, self._head)
            self._entries.append(receipt)
            self._seq += 1
            self._head = receipt["entry_hash"]
            return dict(receipt)

    def verify(self) -> ChainCheck:
        """Verify the chain: the trace file when persisting, else the retained window."""
        with self._lock:
            if self.persisted:
                return verify_entries(self.read_trace(self._trace_id))
            entries = list(self._entries)
            if entries and self._seq > len(entries):
                return verify_entries(entries, start_seq=entries[0]["seq"], start_hash=entries[0]["prev_hash"])
            return verify_entries(entries)

    def read_trace(self, trace_id: str) -> List[Dict[str, Any]]:
        """Read all entries from a persisted trace file."""
        trace_file = self._find_trace_file(trace_id)
        if trace_file is None:
            return []
        entries = []
        with open(trace_file) as f:
            for line in f:
                if line.strip():
                    entries.append(json.loads(line))
        return entries

    def list_traces(self, limit: int = 20) -> List[Dict[str, Any]]:
        """List recent persisted traces with metadata."""
        traces: List[Dict[str, Any]] = []
        if self.base_dir is None or not self.base_dir.exists():
            return traces

        for day_dir in sorted(self.base_dir.iterdir(), reverse=True):
            if not day_dir.is_dir():
                continue
            for trace_file in sorted(day_dir.glob("trace_*.jsonl"), reverse=True):
                stat = trace_file.stat()
                traces.append({
                    "trace_id": trace_file.stem,
                    "date": day_dir.name,
                    "path": str(trace_file),
                    "size_bytes": stat.st_size,
                    "modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                })
                if len(traces) >= limit:
                    return traces
        return traces


# ---------------------------------------------------------------------------
# Module-level default (protected by _module_lock)
# ---------------------------------------------------------------------------

_module_lock = threading.Lock()
_default_journal: Optional[Journal] = None


def get_default_journal() -> Journal:
    """Get or create the persisted default journal.

    Picks up CIVITAS_TRACE_ID from the environment so several processes
    can append to one trace.
    """
    global _default_journal
    with _module_lock:
        if _default_journal is None:
            _default_journal = Journal(
                base_dir=civitas_home() / "journal",
                trace_id=os.environ.get(ENV_TRACE_ID),
            )
        return _default_journal


__all__ = [
    "GENESIS_HASH",
    "DEFAULT_RETAIN",
    "E_CHAIN_BROKEN",
    "E_HASH_MISMATCH",
    "E_SEQ_GAP",
    "E_MISSING_FIELD",
    "generate_trace_id",
    "ChainError",
    "ChainCheck",
    "verify_entries",
    "Journal",
    "get_default_journal",
]
