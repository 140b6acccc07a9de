# app/chain.py
"""
Local chain node hosting BatchTracker deployments.

The node plays the part of the Ethereum network the ledger runs on: it has a
chain identity, assigns contract addresses, executes transactions one at a
time in submission order, stamps them with block time and keeps receipts and
event logs. With ``block_time == 0`` every transaction is mined as soon as it
is submitted; otherwise pending transactions wait for the next block.
"""
import time
import hashlib
import logging
import threading
from typing import Any, Callable

from app.config import BLOCK_TIME, CHAIN_ID, NETWORK_NAME
from app.errors import BatchTrackerError, NotFound, Unauthorized
from app.ledger import BATCH_TRACKER_ABI, BatchTracker, encode_call, normalize_address

logger = logging.getLogger(__name__)


class NodeError(Exception):
    """Error reported by the node in the wire shape the client understands."""

    def __init__(self, code: str, message: str, *, status_code: int = 400, reason: str | None = None, data: dict | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.reason = reason
        self.data = data or {}

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.reason is not None:
            error["reason"] = self.reason
        if self.data:
            error["data"] = self.data
        return {"error": error}


def revert_error(exc: BatchTrackerError) -> NodeError:
    data: dict[str, Any] = {}
    if isinstance(exc, NotFound) and exc.batch_id is not None:
        data["batchId"] = exc.batch_id
    if isinstance(exc, Unauthorized) and exc.required_address:
        data["requiredAddress"] = exc.required_address
    return NodeError(
        "CALL_EXCEPTION",
        f"execution reverted: {exc.reason}",
        reason=exc.reason,
        data=data,
    )


def _sha256_hex(*parts: Any) -> str:
    raw = ":".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ChainNode:
    def __init__(
        self,
        chain_id: int = CHAIN_ID,
        network_name: str = NETWORK_NAME,
        block_time: float = BLOCK_TIME,
        clock: Callable[[], float] = time.time,
    ):
        self.chain_id = chain_id
        self.network_name = network_name
        self.block_time = block_time
        self._clock = clock
        self._lock = threading.RLock()
        self.contracts: dict[str, BatchTracker] = {}
        self.blocks: list[dict] = [{"number": 0, "timestamp": int(clock()), "transactions": []}]
        self._mempool: list[dict] = []
        self._transactions: dict[str, dict] = {}
        self._receipts: dict[str, dict] = {}
        self._nonces: dict[str, int] = {}
        # (contract address, log index) -> (block number, tx hash)
        self._log_meta: dict[tuple[str, int], tuple[int, str]] = {}

    @property
    def automine(self) -> bool:
        return self.block_time <= 0

    @property
    def block_number(self) -> int:
        with self._lock:
            return self.blocks[-1]["number"]

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._mempool)

    def _next_nonce(self, sender: str) -> int:
        nonce = self._nonces.get(sender, 0)
        self._nonces[sender] = nonce + 1
        return nonce

    def _contract(self, address: str) -> BatchTracker:
        try:
            address = normalize_address(address)
        except BatchTrackerError as exc:
            raise NodeError("INVALID_ARGUMENT", exc.message)
        contract = self.contracts.get(address)
        if contract is None:
            raise NodeError("NOT_DEPLOYED", f"No contract found at address {address} on chain {self.chain_id}")
        return contract

    def _sender(self, sender: str) -> str:
        try:
            return normalize_address(sender)
        except BatchTrackerError as exc:
            raise NodeError("UNAUTHENTICATED", exc.message, status_code=401)

    def _queue(self, tx: dict) -> str:
        tx["hash"] = "0x" + _sha256_hex(self.chain_id, tx["from"], tx["nonce"], tx["to"], tx["method"], tx["args"])
        tx["blockNumber"] = None
        self._transactions[tx["hash"]] = tx
        self._mempool.append(tx)
        return tx["hash"]

    # ================= STATE-CHANGING =================

    def deploy(self, sender: str) -> dict:
        sender = self._sender(sender)
        with self._lock:
            nonce = self._next_nonce(sender)
            address = "0x" + _sha256_hex(sender, nonce)[-40:]
            tx_hash = self._queue({
                "from": sender, "to": None, "nonce": nonce,
                "method": None, "args": [], "contractAddress": address,
            })
            self.mine()
        logger.info("[CHAIN] BatchTracker deployed at %s by %s", address, sender)
        return {"address": address, "transactionHash": tx_hash, "chainId": self.chain_id}

    def send_transaction(self, sender: str, address: str, method: str, args: list) -> str:
        sender = self._sender(sender)
        with self._lock:
            self._contract(address)
            spec = BATCH_TRACKER_ABI["functions"].get(method)
            if spec is None or spec["view"]:
                raise NodeError("UNKNOWN_METHOD", f"{method} is not a state-changing BatchTracker method")
            try:
                values = encode_call(method, args)
            except BatchTrackerError as exc:
                raise NodeError("INVALID_ARGUMENT", exc.message)

            tx_hash = self._queue({
                "from": sender, "to": normalize_address(address), "nonce": self._next_nonce(sender),
                "method": method, "args": values,
            })
            logger.info("[CHAIN] Transaction %s queued: %s%s from %s", tx_hash, method, values, sender)

            if self.automine:
                self.mine()
                receipt = self._receipts[tx_hash]
                if receipt["status"] == 0:
                    raise receipt.pop("_error")
        return tx_hash

    def mine(self) -> dict:
        """Executes every pending transaction, in order, in one new block."""
        with self._lock:
            previous = self.blocks[-1]
            block = {
                "number": previous["number"] + 1,
                "timestamp": max(int(self._clock()), previous["timestamp"] + 1),
                "transactions": [],
            }
            pending, self._mempool = self._mempool, []
            for tx in pending:
                self._execute(tx, block)
            self.blocks.append(block)
        if pending:
            logger.info("[CHAIN] Mined block #%s with %s transaction(s)", block["number"], len(pending))
        return {"number": block["number"], "timestamp": block["timestamp"], "transactions": list(block["transactions"])}

    def _execute(self, tx: dict, block: dict) -> None:
        receipt = {
            "transactionHash": tx["hash"],
            "blockNumber": block["number"],
            "from": tx["from"],
            "to": tx["to"],
            "contractAddress": tx.get("contractAddress"),
            "status": 1,
            "logs": [],
            "revertReason": None,
            "revertData": {},
        }
        if tx["method"] is None:
            self.contracts[tx["contractAddress"]] = BatchTracker(clock=self._clock)
        else:
            contract = self.contracts[tx["to"]]
            start = contract.log_count
            try:
                contract.dispatch(tx["method"], tx["from"], tx["args"], timestamp=block["timestamp"])
            except BatchTrackerError as exc:
                logger.info("[CHAIN] Transaction %s reverted: %s", tx["hash"], exc.reason)
                receipt["status"] = 0
                receipt["revertReason"] = exc.reason
                receipt["_error"] = revert_error(exc)
                receipt["revertData"] = receipt["_error"].data
            except Exception as exc:
                # the block still closes; later transactions keep their receipts
                logger.exception("[CHAIN] Transaction %s failed during execution", tx["hash"])
                receipt["status"] = 0
                receipt["revertReason"] = f"Execution error: {exc}"
                receipt["_error"] = NodeError("EXECUTION_ERROR", receipt["revertReason"], status_code=500)
            else:
                for entry in contract.get_logs(from_index=start):
                    self._log_meta[(tx["to"], entry.log_index)] = (block["number"], tx["hash"])
                    receipt["logs"].append(self._log_dict(tx["to"], entry))

        tx["blockNumber"] = block["number"]
        block["transactions"].append(tx["hash"])
        self._receipts[tx["hash"]] = receipt

    # ================= READS =================

    def has_code(self, address: str) -> bool:
        with self._lock:
            try:
                self._contract(address)
            except NodeError:
                return False
            return True

    def call(self, address: str, method: str, args: list) -> Any:
        with self._lock:
            contract = self._contract(address)
        spec = BATCH_TRACKER_ABI["functions"].get(method)
        if spec is None or not spec["view"]:
            raise NodeError("UNKNOWN_METHOD", f"{method} is not a BatchTracker view method")
        try:
            values = encode_call(method, args)
        except BatchTrackerError as exc:
            raise NodeError("INVALID_ARGUMENT", exc.message)
        try:
            return contract.dispatch(method, None, values)
        except BatchTrackerError as exc:
            raise revert_error(exc)

    def get_transaction(self, tx_hash: str) -> dict:
        with self._lock:
            tx = self._transactions.get(tx_hash)
            if tx is None:
                raise NodeError("NOT_FOUND", f"Transaction {tx_hash} not found", status_code=404)
            return {k: v for k, v in tx.items()}

    def get_receipt(self, tx_hash: str) -> dict | None:
        with self._lock:
            if tx_hash not in self._transactions:
                raise NodeError("NOT_FOUND", f"Transaction {tx_hash} not found", status_code=404)
            receipt = self._receipts.get(tx_hash)
            if receipt is None:
                return None
            return {k: v for k, v in receipt.items() if not k.startswith("_")}

    def get_logs(
        self,
        address: str,
        event: str | None = None,
        batch_id: int | None = None,
        participant: str | None = None,
        from_block: int = 0,
    ) -> list[dict]:
        if event is not None and event not in BATCH_TRACKER_ABI["events"]:
            raise NodeError("INVALID_ARGUMENT", f"Unknown event {event}")
        with self._lock:
            contract = self._contract(address)
            address = normalize_address(address)
            try:
                entries = contract.get_logs(event=event, batch_id=batch_id, address=participant)
            except BatchTrackerError as exc:
                raise NodeError("INVALID_ARGUMENT", exc.message)
            logs = [self._log_dict(address, entry) for entry in entries]
        return [log for log in logs if log["blockNumber"] >= from_block]

    def _log_dict(self, address: str, entry) -> dict:
        block_number, tx_hash = self._log_meta.get((address, entry.log_index), (None, None))
        log = entry.to_dict()
        log.update({"address": address, "blockNumber": block_number, "transactionHash": tx_hash})
        return log


chain_node = ChainNode()


def get_chain_node() -> ChainNode:
    return chain_node
