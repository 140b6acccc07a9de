# app/ledger.py
"""
BatchTracker ledger contract.

Owns every batch record and its ownership history. A batch is created once,
changes hands only through ``transfer_batch`` and is never deleted; the owner
history is append-only and its last entry is the current owner.

All state lives on a ``BatchTracker`` instance. Mutations are serialised by the
instance lock, so a check-then-mutate sequence is never observed half done.
Every state change emits an event into the contract log, which is enough to
rebuild the full chain of custody without reading storage.
"""
import re
import time
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from app.errors import (
    InvalidArgument,
    NotFound,
    Unauthorized,
    REASON_NOT_OWNER,
    REASON_SAME_OWNER,
    REASON_ZERO_OWNER,
)

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_UINT_RE = re.compile(r"[0-9]+")

# ================= INTERFACE =================
# Inputs are (name, type); events list (name, type, indexed).

BATCH_TRACKER_ABI = {
    "functions": {
        "createBatch": {"inputs": [("_ipfsHash", "string")], "outputs": ["uint256"], "view": False},
        "transferBatch": {"inputs": [("_batchId", "uint256"), ("_newOwner", "address")], "outputs": [], "view": False},
        "updateMetadata": {"inputs": [("_batchId", "uint256"), ("_newIpfsHash", "string")], "outputs": [], "view": False},
        "getCurrentOwner": {"inputs": [("_batchId", "uint256")], "outputs": ["address"], "view": True},
        "getOwnerHistory": {"inputs": [("_batchId", "uint256")], "outputs": ["address[]"], "view": True},
        "getBatchInfo": {
            "inputs": [("_batchId", "uint256")],
            "outputs": ["uint256", "address", "uint256", "uint256", "uint256", "string"],
            "view": True,
        },
        "getTotalBatches": {"inputs": [], "outputs": ["uint256"], "view": True},
        "getOwnerCount": {"inputs": [("_batchId", "uint256")], "outputs": ["uint256"], "view": True},
        "wasOwner": {"inputs": [("_batchId", "uint256"), ("_address", "address")], "outputs": ["bool"], "view": True},
        "batchExists": {"inputs": [("_batchId", "uint256")], "outputs": ["bool"], "view": True},
    },
    "events": {
        "BatchCreated": [
            ("batchId", "uint256", True),
            ("creator", "address", True),
            ("timestamp", "uint256", False),
            ("ipfsHash", "string", False),
        ],
        "BatchTransferred": [
            ("batchId", "uint256", True),
            ("from", "address", True),
            ("to", "address", True),
            ("timestamp", "uint256", False),
        ],
        "MetadataUpdated": [
            ("batchId", "uint256", True),
            ("oldIpfsHash", "string", False),
            ("newIpfsHash", "string", False),
            ("timestamp", "uint256", False),
        ],
    },
}

PARTICIPANT_FIELDS = ("creator", "from", "to")


# ================= ADDRESSES =================

def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: Any) -> str:
    """Lower-cases a hex address, rejecting anything malformed."""
    if not is_address(value):
        raise InvalidArgument(f"Invalid address format: {value!r}")
    return value.lower()


def is_zero_address(value: str) -> bool:
    return value.lower() == ZERO_ADDRESS


def coerce_arg(abi_type: str, value: Any) -> Any:
    if abi_type == "uint256":
        # ints or decimal-digit strings only
        if isinstance(value, int) and not isinstance(value, bool):
            number = value
        elif isinstance(value, str) and _UINT_RE.fullmatch(value):
            number = int(value)
        else:
            raise InvalidArgument(f"Expected an integer, got {value!r}")
        if number < 0:
            raise InvalidArgument(f"Expected an unsigned integer, got {number}")
        return number
    if abi_type == "address":
        return normalize_address(value)
    if abi_type == "string":
        if value is None:
            return ""
        if not isinstance(value, str):
            raise InvalidArgument(f"Expected a string, got {value!r}")
        return value
    raise InvalidArgument(f"Unsupported ABI type {abi_type}")


def encode_call(method: str, args: list | tuple) -> list:
    """Validates and coerces positional call arguments against the ABI."""
    spec = BATCH_TRACKER_ABI["functions"].get(method)
    if spec is None:
        raise InvalidArgument(f"Unknown contract method: {method}")
    inputs = spec["inputs"]
    if len(args) != len(inputs):
        raise InvalidArgument(f"{method} expects {len(inputs)} argument(s), got {len(args)}")
    return [coerce_arg(abi_type, value) for (_, abi_type), value in zip(inputs, args)]


# ================= RECORDS =================

@dataclass
class Batch:
    batch_id: int
    owner_history: list[str]
    created_at: int
    last_transfer_at: int
    ipfs_hash: str = ""
    exists: bool = True

    @property
    def current_owner(self) -> str:
        return self.owner_history[-1]


@dataclass
class LogEntry:
    log_index: int
    event: str
    args: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"logIndex": self.log_index, "event": self.event, "args": dict(self.args)}


# ================= CONTRACT =================

class BatchTracker:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.RLock()
        self._batches: dict[int, Batch] = {}
        self._next_batch_id = 1
        self._logs: list[LogEntry] = []

    def _now(self, timestamp: int | None) -> int:
        return int(self._clock()) if timestamp is None else int(timestamp)

    def _emit(self, event: str, **args) -> None:
        entry = LogEntry(log_index=len(self._logs), event=event, args=args)
        self._logs.append(entry)
        logger.debug("[LEDGER] %s %s", event, args)

    def _require_batch(self, batch_id: int) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None or not batch.exists:
            raise NotFound(batch_id=batch_id)
        return batch

    def _require_owner(self, batch: Batch, sender: str) -> None:
        if batch.current_owner != sender:
            raise Unauthorized(REASON_NOT_OWNER, required_address=batch.current_owner)

    # ---------- state-changing ----------

    def create_batch(self, sender: str, ipfs_hash: str = "", timestamp: int | None = None) -> int:
        sender = normalize_address(sender)
        ipfs_hash = ipfs_hash or ""
        with self._lock:
            now = self._now(timestamp)
            batch_id = self._next_batch_id
            self._batches[batch_id] = Batch(
                batch_id=batch_id,
                owner_history=[sender],
                created_at=now,
                last_transfer_at=now,
                ipfs_hash=ipfs_hash,
            )
            self._next_batch_id += 1
            self._emit("BatchCreated", batchId=batch_id, creator=sender, timestamp=now, ipfsHash=ipfs_hash)
        return batch_id

    def transfer_batch(self, sender: str, batch_id: int, new_owner: str, timestamp: int | None = None) -> None:
        sender = normalize_address(sender)
        new_owner = normalize_address(new_owner)
        with self._lock:
            batch = self._require_batch(batch_id)
            self._require_owner(batch, sender)
            if is_zero_address(new_owner):
                raise InvalidArgument(REASON_ZERO_OWNER)
            if new_owner == batch.current_owner:
                raise InvalidArgument(REASON_SAME_OWNER)

            now = self._now(timestamp)
            previous = batch.current_owner
            batch.owner_history.append(new_owner)
            batch.last_transfer_at = now
            self._emit("BatchTransferred", batchId=batch_id, **{"from": previous, "to": new_owner}, timestamp=now)

    def update_metadata(self, sender: str, batch_id: int, new_ipfs_hash: str, timestamp: int | None = None) -> None:
        sender = normalize_address(sender)
        with self._lock:
            batch = self._require_batch(batch_id)
            self._require_owner(batch, sender)
            now = self._now(timestamp)
            old = batch.ipfs_hash
            batch.ipfs_hash = new_ipfs_hash or ""
            self._emit("MetadataUpdated", batchId=batch_id, oldIpfsHash=old, newIpfsHash=batch.ipfs_hash, timestamp=now)

    # ---------- read accessors ----------

    def get_current_owner(self, batch_id: int) -> str:
        with self._lock:
            return self._require_batch(batch_id).current_owner

    def get_owner_history(self, batch_id: int) -> list[str]:
        with self._lock:
            return list(self._require_batch(batch_id).owner_history)

    def get_batch_info(self, batch_id: int) -> tuple[int, str, int, int, int, str]:
        with self._lock:
            batch = self._require_batch(batch_id)
            return (
                batch.batch_id,
                batch.current_owner,
                len(batch.owner_history),
                batch.created_at,
                batch.last_transfer_at,
                batch.ipfs_hash,
            )

    def get_total_batches(self) -> int:
        with self._lock:
            return self._next_batch_id - 1

    def get_owner_count(self, batch_id: int) -> int:
        with self._lock:
            return len(self._require_batch(batch_id).owner_history)

    def was_owner(self, batch_id: int, address: str) -> bool:
        address = normalize_address(address)
        with self._lock:
            return any(owner == address for owner in self._require_batch(batch_id).owner_history)

    def batch_exists(self, batch_id: int) -> bool:
        with self._lock:
            batch = self._batches.get(batch_id)
            return batch is not None and batch.exists

    # ---------- event log ----------

    @property
    def log_count(self) -> int:
        with self._lock:
            return len(self._logs)

    def get_logs(
        self,
        event: str | None = None,
        batch_id: int | None = None,
        address: str | None = None,
        from_index: int = 0,
    ) -> list[LogEntry]:
        """Filters the log by event name and by the indexed batchId / participant fields."""
        if address is not None:
            address = normalize_address(address)
        with self._lock:
            entries = self._logs[from_index:]
        result = []
        for entry in entries:
            if event is not None and entry.event != event:
                continue
            if batch_id is not None and entry.args.get("batchId") != batch_id:
                continue
            if address is not None and address not in (entry.args.get(f) for f in PARTICIPANT_FIELDS):
                continue
            result.append(entry)
        return result

    def replay_history(self, batch_id: int) -> list[str]:
        """Rebuilds a batch's owner history from its events alone."""
        history: list[str] = []
        for entry in self.get_logs(batch_id=batch_id):
            if entry.event == "BatchCreated":
                history = [entry.args["creator"]]
            elif entry.event == "BatchTransferred":
                history.append(entry.args["to"])
        if not history:
            raise NotFound(batch_id=batch_id)
        return history

    # ---------- ABI dispatch ----------

    def dispatch(self, method: str, sender: str | None, args: list | tuple, timestamp: int | None = None) -> Any:
        """Runs an ABI method by name; used by the chain node."""
        values = encode_call(method, args)
        spec = BATCH_TRACKER_ABI["functions"][method]
        if not spec["view"] and sender is None:
            raise InvalidArgument(f"{method} requires a sender")

        if method == "createBatch":
            return self.create_batch(sender, values[0], timestamp=timestamp)
        if method == "transferBatch":
            return self.transfer_batch(sender, values[0], values[1], timestamp=timestamp)
        if method == "updateMetadata":
            return self.update_metadata(sender, values[0], values[1], timestamp=timestamp)
        if method == "getCurrentOwner":
            return self.get_current_owner(values[0])
        if method == "getOwnerHistory":
            return self.get_owner_history(values[0])
        if method == "getBatchInfo":
            return list(self.get_batch_info(values[0]))
        if method == "getTotalBatches":
            return self.get_total_batches()
        if method == "getOwnerCount":
            return self.get_owner_count(values[0])
        if method == "wasOwner":
            return self.was_owner(values[0], values[1])
        return self.batch_exists(values[0])
