# app/ipfs_handler.py
"""
Pinata-backed metadata store.

Documents are content addressed: pinning the same JSON twice yields the same
hash, and a pinned document never changes. "Updating" batch metadata means
pinning a new document and pointing the ledger at the new hash.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from app.config import (
    HTTP_TIMEOUT,
    PINATA_API_KEY,
    PINATA_API_URL,
    PINATA_GATEWAY,
    PINATA_JWT,
    PINATA_SECRET_KEY,
)
from app.errors import InvalidArgument, OffChainStorageFailure
from app.models.batch import Attribute, BatchMetadata, BatchProperties, ImageUpload

logger = logging.getLogger(__name__)


def get_public_url(cid: str, gateway: str = PINATA_GATEWAY) -> str:
    """Resolves an IPFS hash (CID) to `{gateway}/ipfs/{cid}`."""
    if not cid:
        return ""
    return f"{gateway.rstrip('/')}/ipfs/{cid}"


def _ipfs_hash(result: dict) -> str:
    cid = result.get("IpfsHash") if isinstance(result, dict) else None
    if not cid:
        raise OffChainStorageFailure("Pinata response did not include an IpfsHash")
    return cid


class PinataService:
    def __init__(
        self,
        api_key: Optional[str] = PINATA_API_KEY,
        secret_key: Optional[str] = PINATA_SECRET_KEY,
        jwt: Optional[str] = PINATA_JWT,
        gateway: str = PINATA_GATEWAY,
        api_url: str = PINATA_API_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.secret_key = secret_key
        self.jwt = jwt
        self.gateway = gateway.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport)

    def _auth_headers(self) -> dict:
        if self.jwt:
            return {"Authorization": f"Bearer {self.jwt}"}
        if self.api_key and self.secret_key:
            return {"pinata_api_key": self.api_key, "pinata_secret_api_key": self.secret_key}
        raise OffChainStorageFailure(
            "Pinata configuration incomplete. Set PINATA_JWT or PINATA_API_KEY and PINATA_SECRET_KEY"
        )

    # ================= UPLOADS =================

    async def upload_json(self, metadata: BatchMetadata) -> dict:
        """Pins a metadata document; returns Pinata's {IpfsHash, PinSize, Timestamp}."""
        headers = self._auth_headers()
        body = {
            "pinataContent": metadata.to_json(),
            "pinataMetadata": {
                "name": f"batch-{metadata.name}-metadata.json",
                "keyvalues": {
                    "type": "batch_metadata",
                    "batch_name": metadata.name,
                    "created_at": metadata.created_at,
                },
            },
            "pinataOptions": {"cidVersion": 1},
        }
        try:
            async with self._client() as client:
                resp = await client.post(f"{self.api_url}/pinning/pinJSONToIPFS", json=body, headers=headers)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("[IPFS] Metadata pin failed with status %s: %s", e.response.status_code, e.response.text)
            raise OffChainStorageFailure(f"Failed to upload metadata to IPFS: Pinata API error {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[IPFS] Metadata pin failed: %s", e)
            raise OffChainStorageFailure(f"Failed to upload metadata to IPFS: {e}")

    async def upload_file(self, image: ImageUpload) -> dict:
        headers = self._auth_headers()
        files = {"file": (image.filename, image.content, image.content_type)}
        data = {
            "pinataMetadata": json.dumps({
                "name": f"batch-{image.filename}",
                "keyvalues": {
                    "type": "batch_file",
                    "filename": image.filename,
                    "uploaded_at": datetime.now(timezone.utc).isoformat(),
                },
            }),
            "pinataOptions": json.dumps({"cidVersion": 1}),
        }
        try:
            async with self._client(timeout=max(self.timeout, 30.0)) as client:
                resp = await client.post(f"{self.api_url}/pinning/pinFileToIPFS", files=files, data=data, headers=headers)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("[IPFS] File pin failed with status %s: %s", e.response.status_code, e.response.text)
            raise OffChainStorageFailure(f"Failed to upload file to IPFS: Pinata API error {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[IPFS] File pin failed: %s", e)
            raise OffChainStorageFailure(f"Failed to upload file to IPFS: {e}")

    # ================= READS =================

    async def get_content(self, ipfs_hash: str) -> Any:
        try:
            async with self._client() as client:
                resp = await client.get(self.get_image_url(ipfs_hash))
            resp.raise_for_status()
            if "application/json" in resp.headers.get("content-type", ""):
                return resp.json()
            return resp.text
        except httpx.HTTPStatusError as e:
            raise OffChainStorageFailure(f"Failed to fetch from IPFS: {e.response.status_code}")
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise OffChainStorageFailure(f"Failed to fetch content from IPFS: {e}")

    async def get_batch_metadata(self, ipfs_hash: str) -> Optional[BatchMetadata]:
        """Fetches a document and returns it only if it is valid batch metadata."""
        content = await self.get_content(ipfs_hash)
        if not isinstance(content, dict):
            logger.warning("[IPFS] %s is not a JSON document", ipfs_hash)
            return None
        try:
            return BatchMetadata.model_validate(content)
        except ValidationError as e:
            logger.warning("[IPFS] %s does not look like batch metadata: %s", ipfs_hash, e.errors())
            return None

    async def is_image_hash(self, ipfs_hash: str) -> bool:
        try:
            async with self._client() as client:
                resp = await client.head(self.get_image_url(ipfs_hash))
        except (httpx.HTTPError, httpx.InvalidURL):
            return False
        return resp.headers.get("content-type", "").startswith("image/")

    def get_image_url(self, ipfs_hash: str) -> str:
        return get_public_url(ipfs_hash, self.gateway)

    # ================= BATCH ASSETS =================

    def create_batch_metadata(
        self,
        name: str,
        description: str,
        image_hash: Optional[str] = None,
        properties: Optional[BatchProperties] = None,
        attributes: Optional[List[Attribute]] = None,
        external_url: Optional[str] = None,
    ) -> BatchMetadata:
        try:
            return BatchMetadata(
                name=name,
                description=description,
                image=self.get_image_url(image_hash) if image_hash else None,
                batch_properties=properties or BatchProperties(),
                attributes=attributes or [],
                external_url=external_url,
            )
        except ValidationError as e:
            raise InvalidArgument(f"Invalid batch metadata: {e.errors()[0]['msg']}")

    async def upload_batch_with_assets(
        self,
        name: str,
        description: str,
        image: Optional[ImageUpload] = None,
        properties: Optional[BatchProperties] = None,
        attributes: Optional[List[Attribute]] = None,
        external_url: Optional[str] = None,
    ) -> Tuple[str, Optional[str], BatchMetadata]:
        """Pins the image (if any) and then the metadata that points at it."""
        # reject bad input before pinning anything
        self.create_batch_metadata(name, description, None, properties, attributes, external_url)

        image_hash = None
        if image is not None:
            logger.info("[IPFS] Uploading image %s", image.filename)
            image_hash = _ipfs_hash(await self.upload_file(image))
            logger.info("[IPFS] Image uploaded: %s", image_hash)

        metadata = self.create_batch_metadata(name, description, image_hash, properties, attributes, external_url)
        metadata_hash = _ipfs_hash(await self.upload_json(metadata))
        logger.info("[IPFS] Metadata uploaded: %s", metadata_hash)
        return metadata_hash, image_hash, metadata
