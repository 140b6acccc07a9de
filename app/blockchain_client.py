# app/blockchain_client.py
"""
Client access layer for the BatchTracker ledger.

Every public coroutine resolves the node's chain id to a deployment first, so a
client pointed at the wrong network fails before touching any contract. All
failures leave this module as ``BatchTrackerError`` subclasses; httpx errors
and node error bodies never reach the caller raw.

Transactions are long-latency: after submission the client polls for the
receipt until ``confirm_timeout`` and then gives up with a retryable error.
Giving up does not cancel anything, the transaction may still be mined later.
"""
import asyncio
import functools
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Union

import httpx
from pymongo.errors import PyMongoError

from app.config import CONFIRM_TIMEOUT, HTTP_TIMEOUT, NODE_URL, POLL_INTERVAL
from app.database import InMemoryMetadataIndex, MetadataIndex
from app.errors import (
    REASON_ZERO_OWNER,
    BatchTrackerError,
    InvalidArgument,
    NotFound,
    OffChainStorageFailure,
    TransactionRejected,
    TransientNetworkFailure,
    UnsupportedNetwork,
    classify_error,
    from_revert,
)
from app.ipfs_handler import PinataService
from app.ledger import BATCH_TRACKER_ABI, encode_call, is_zero_address, normalize_address
from app.models.batch import BatchEvent, BatchFormData, BatchInfo, ImageUpload
from app.networks import ContractConfig, get_contract_config

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[dict], Union[bool, Awaitable[bool]]]


def classified(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except BatchTrackerError:
            raise
        except Exception as e:
            raise classify_error(e) from e
    return wrapper


class Signer:
    """The account that authorises transactions.

    ``confirm`` stands in for the wallet prompt: it receives the transaction
    request and returns False when the user declines it.
    """

    def __init__(self, address: str, token: str, confirm: Optional[ConfirmCallback] = None):
        if not address:
            raise InvalidArgument("No account connected")
        self.address = normalize_address(address)
        self.token = token
        self.confirm = confirm

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    async def authorize(self, tx_request: dict) -> None:
        if self.confirm is None:
            return
        approved = self.confirm(tx_request)
        if inspect.isawaitable(approved):
            approved = await approved
        if not approved:
            raise TransactionRejected()


class BatchTrackerClient:
    def __init__(
        self,
        node_url: str = NODE_URL,
        pinata: Optional[PinataService] = None,
        metadata_index: Optional[MetadataIndex] = None,
        timeout: float = HTTP_TIMEOUT,
        confirm_timeout: float = CONFIRM_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
        deployments_dir: Optional[Path] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.node_url = node_url.rstrip("/")
        self.pinata = pinata
        self.metadata_index = metadata_index if metadata_index is not None else InMemoryMetadataIndex()
        self.timeout = timeout
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.deployments_dir = deployments_dir
        self._transport = transport

    # ================= TRANSPORT =================

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.node_url, timeout=self.timeout, transport=self._transport)

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        async with self._client() as client:
            resp = await client.get(path, params=params)
        resp.raise_for_status()
        return resp.json()

    async def _post(self, path: str, body: Optional[dict] = None, headers: Optional[dict] = None) -> dict:
        async with self._client() as client:
            resp = await client.post(path, json=body or {}, headers=headers)
        resp.raise_for_status()
        return resp.json()

    # ================= NETWORK RESOLUTION =================

    @classified
    async def get_chain_id(self) -> int:
        data = await self._get("/chain")
        return int(data["chainId"])

    @classified
    async def resolve_contract(self) -> ContractConfig:
        chain_id = await self.get_chain_id()
        return get_contract_config(chain_id, self.deployments_dir)

    @classified
    async def validate_contract_and_signer(self, signer: Signer) -> ContractConfig:
        config = await self.resolve_contract()

        code = await self._get(f"/contracts/{config.address}/code")
        if not code.get("deployed"):
            raise UnsupportedNetwork(
                f"No contract found at address {config.address} on chain {config.chain_id}. "
                "Please ensure the contract is deployed"
            )

        await self._call(config, "getTotalBatches")
        return config

    # ================= LOW-LEVEL CALLS =================

    async def _call(self, config: ContractConfig, method: str, *args) -> Any:
        if not BATCH_TRACKER_ABI["functions"].get(method, {}).get("view"):
            raise InvalidArgument(f"{method} is not a view method")
        values = encode_call(method, list(args))
        data = await self._post(f"/contracts/{config.address}/call", {"method": method, "args": values})
        return data["result"]

    async def _transact(self, config: ContractConfig, signer: Signer, method: str, *args) -> dict:
        values = encode_call(method, list(args))
        tx_request = {
            "chainId": config.chain_id,
            "to": config.address,
            "from": signer.address,
            "method": method,
            "args": values,
        }
        await signer.authorize(tx_request)

        data = await self._post(
            f"/contracts/{config.address}/transactions",
            {"method": method, "args": values},
            headers=signer.headers,
        )
        tx_hash = data["hash"]
        logger.info("[CLIENT] %s sent: %s", method, tx_hash)

        receipt = await self._wait_for_receipt(tx_hash)
        if receipt.get("status") == 0:
            raise from_revert(receipt.get("revertReason"), receipt.get("revertData"))
        logger.info("[CLIENT] %s confirmed in block %s", method, receipt.get("blockNumber"))
        return receipt

    async def _wait_for_receipt(self, tx_hash: str) -> dict:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout
        while True:
            data = await self._get(f"/transactions/{tx_hash}/receipt")
            if data.get("receipt") is not None:
                return data["receipt"]
            if loop.time() >= deadline:
                raise TransientNetworkFailure(
                    f"Timed out waiting for transaction {tx_hash} to be confirmed; it may still be mined later"
                )
            await asyncio.sleep(self.poll_interval)

    @staticmethod
    def _find_event(config: ContractConfig, receipt: dict, name: str) -> Optional[dict]:
        for log in receipt.get("logs", []):
            if log.get("event") == name and log.get("address", "").lower() == config.address:
                return log
        return None

    # ================= TRANSACTIONS =================

    @classified
    async def create_batch(self, signer: Signer, metadata_ref: str = "") -> int:
        config = await self.resolve_contract()
        receipt = await self._transact(config, signer, "createBatch", metadata_ref or "")

        event = self._find_event(config, receipt, "BatchCreated")
        if event is None:
            raise UnsupportedNetwork("BatchCreated event not found in transaction receipt")
        batch_id = int(event["args"]["batchId"])
        logger.info("[CLIENT] Batch created with ID %s", batch_id)
        return batch_id

    @classified
    async def create_batch_with_metadata(
        self,
        signer: Signer,
        form: BatchFormData,
        image: Optional[ImageUpload] = None,
    ) -> int:
        """Pins image + metadata, creates the batch, then records batchId -> hash.

        Off-chain failures abort before anything is sent on-chain. If the
        on-chain part fails, the pinned document is left unreferenced.
        """
        if self.pinata is None:
            raise OffChainStorageFailure("No metadata store configured")
        # fail on a wrong network before paying for uploads
        await self.resolve_contract()

        metadata_hash, image_hash, _ = await self.pinata.upload_batch_with_assets(
            form.name,
            form.description,
            image,
            form.batch_properties(),
            form.attributes,
            form.external_url,
        )

        try:
            batch_id = await self.create_batch(signer, metadata_hash)
        except BatchTrackerError as e:
            logger.warning("[CLIENT] On-chain creation failed (%s); metadata %s left unreferenced", e.kind, metadata_hash)
            raise

        try:
            await self.metadata_index.set_batch_metadata(batch_id, metadata_hash)
        except PyMongoError as e:
            logger.error("[INDEX] Could not record metadata for batch %s: %s", batch_id, e)

        logger.info("[CLIENT] Batch %s created with metadata %s (image %s)", batch_id, metadata_hash, image_hash)
        return batch_id

    @classified
    async def transfer_batch(self, signer: Signer, batch_id: int, new_owner: str) -> dict:
        new_owner = normalize_address(new_owner)
        if is_zero_address(new_owner):
            raise InvalidArgument(REASON_ZERO_OWNER)

        config = await self.resolve_contract()
        logger.info("[CLIENT] Transferring batch %s to %s", batch_id, new_owner)
        receipt = await self._transact(config, signer, "transferBatch", batch_id, new_owner)
        return receipt

    @classified
    async def update_metadata(self, signer: Signer, batch_id: int, new_metadata_ref: str) -> dict:
        config = await self.resolve_contract()
        receipt = await self._transact(config, signer, "updateMetadata", batch_id, new_metadata_ref or "")
        return receipt

    # ================= READS =================

    async def _batch_info(self, config: ContractConfig, batch_id: int) -> BatchInfo:
        return BatchInfo.from_result(await self._call(config, "getBatchInfo", batch_id))

    @classified
    async def get_batch_info(self, batch_id: int) -> BatchInfo:
        config = await self.resolve_contract()
        return await self._batch_info(config, batch_id)

    @classified
    async def get_batch_info_with_metadata(self, batch_id: int) -> BatchInfo:
        """On-chain record plus its metadata document, when one can be fetched."""
        info = await self.get_batch_info(batch_id)

        ref = info.ipfsHash
        if not ref:
            try:
                ref = await self.metadata_index.get_batch_metadata(batch_id)
            except PyMongoError as e:
                logger.error("[INDEX] Lookup for batch %s failed: %s", batch_id, e)
        if not ref or self.pinata is None:
            return info

        info.ipfsHash = ref
        try:
            info.metadata = await self.pinata.get_batch_metadata(ref)
        except OffChainStorageFailure as e:
            logger.error("[IPFS] Failed to fetch metadata for batch %s: %s", batch_id, e)
        return info

    @classified
    async def get_owner_history(self, batch_id: int) -> List[str]:
        config = await self.resolve_contract()
        return await self._call(config, "getOwnerHistory", batch_id)

    @classified
    async def get_current_owner(self, batch_id: int) -> str:
        config = await self.resolve_contract()
        return await self._call(config, "getCurrentOwner", batch_id)

    @classified
    async def get_owner_count(self, batch_id: int) -> int:
        config = await self.resolve_contract()
        return int(await self._call(config, "getOwnerCount", batch_id))

    @classified
    async def was_owner(self, batch_id: int, address: str) -> bool:
        config = await self.resolve_contract()
        return bool(await self._call(config, "wasOwner", batch_id, normalize_address(address)))

    @classified
    async def batch_exists(self, batch_id: int) -> bool:
        config = await self.resolve_contract()
        return bool(await self._call(config, "batchExists", batch_id))

    @classified
    async def get_total_batches(self) -> int:
        config = await self.resolve_contract()
        return int(await self._call(config, "getTotalBatches"))

    @classified
    async def get_user_owned_batches(self, user_address: str) -> List[BatchInfo]:
        """Scans every batch id and keeps those currently owned by the user.

        O(total batches) reads per call; there is no owner index.
        """
        user_address = normalize_address(user_address)
        config = await self.resolve_contract()
        total = int(await self._call(config, "getTotalBatches"))

        owned: List[BatchInfo] = []
        for batch_id in range(1, total + 1):
            try:
                current_owner = await self._call(config, "getCurrentOwner", batch_id)
            except httpx.HTTPStatusError as e:
                error = classify_error(e)
                if isinstance(error, NotFound):
                    logger.debug("[CLIENT] Batch %s not found during scan", batch_id)
                    continue
                raise error from e
            if current_owner.lower() == user_address:
                owned.append(await self._batch_info(config, batch_id))
        return owned

    @classified
    async def get_batch_events(self, batch_id: int) -> List[BatchEvent]:
        """Chain of custody for one batch, rebuilt from the contract's event log."""
        config = await self.resolve_contract()
        data = await self._get(f"/contracts/{config.address}/logs", params={"batchId": batch_id})
        return [
            BatchEvent(
                event=log["event"],
                batchId=int(log["args"]["batchId"]),
                blockNumber=log.get("blockNumber"),
                transactionHash=log.get("transactionHash"),
                args=log["args"],
            )
            for log in data.get("logs", [])
        ]
