# routes/batches.py
import json
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, ValidationError

from app.blockchain_client import BatchTrackerClient, Signer
from app.database import get_metadata_index
from app.errors import InvalidArgument, NotFound
from app.ipfs_handler import PinataService
from app.models.batch import Attribute, BatchEvent, BatchFormData, BatchInfo, ImageUpload
from app.networks import get_network_name
from utils.jwt import verify_token

router = APIRouter(prefix="/api", tags=["batches"])

_batch_client: Optional[BatchTrackerClient] = None


def get_batch_client() -> BatchTrackerClient:
    global _batch_client
    if _batch_client is None:
        _batch_client = BatchTrackerClient(pinata=PinataService(), metadata_index=get_metadata_index())
    return _batch_client


def get_signer(user=Depends(verify_token)) -> Signer:
    return Signer(user["address"], user["token"])


class RawBatchCreate(BaseModel):
    ipfsHash: str = ""


class BatchTransfer(BaseModel):
    newOwner: str


class MetadataUpdate(BaseModel):
    ipfsHash: str


def _parse_attributes(attributes_json: Optional[str]) -> List[Attribute]:
    if not attributes_json:
        return []
    try:
        raw = json.loads(attributes_json)
        if not isinstance(raw, list):
            raise InvalidArgument("attributes must be a JSON list of {trait_type, value}")
        return [Attribute.model_validate(item) for item in raw]
    except (ValueError, ValidationError):
        raise InvalidArgument("attributes must be a JSON list of {trait_type, value}")


# ================= WRITE =================

@router.post("/batches")
async def create_batch_endpoint(
    name: str = Form(...),
    description: str = Form(...),
    origin: Optional[str] = Form(None),
    quality_grade: Optional[str] = Form(None),
    harvest_date: Optional[str] = Form(None),
    expiry_date: Optional[str] = Form(None),
    weight: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    certifications: Optional[str] = Form(None),
    external_url: Optional[str] = Form(None),
    attributes_json: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    signer: Signer = Depends(get_signer),
    client: BatchTrackerClient = Depends(get_batch_client),
):
    try:
        form = BatchFormData(
            name=name,
            description=description,
            origin=origin,
            quality_grade=quality_grade,
            harvest_date=harvest_date,
            expiry_date=expiry_date,
            weight=weight,
            location=location,
            certifications=[c.strip() for c in (certifications or "").split(",") if c.strip()],
            external_url=external_url,
            attributes=_parse_attributes(attributes_json),
        )
    except ValidationError as e:
        raise InvalidArgument(f"Invalid batch data: {e.errors()[0]['msg']}")

    upload = None
    if image is not None and image.filename:
        upload = ImageUpload(
            filename=image.filename,
            content=await image.read(),
            content_type=image.content_type or "application/octet-stream",
        )

    batch_id = await client.create_batch_with_metadata(signer, form, upload)
    return {"batchId": batch_id}


@router.post("/batches/raw")
async def create_raw_batch(
    payload: RawBatchCreate,
    signer: Signer = Depends(get_signer),
    client: BatchTrackerClient = Depends(get_batch_client),
):
    batch_id = await client.create_batch(signer, payload.ipfsHash)
    return {"batchId": batch_id}


@router.post("/batches/{batch_id}/transfer")
async def transfer_batch_endpoint(
    batch_id: int,
    payload: BatchTransfer,
    signer: Signer = Depends(get_signer),
    client: BatchTrackerClient = Depends(get_batch_client),
):
    receipt = await client.transfer_batch(signer, batch_id, payload.newOwner)
    return {"batchId": batch_id, "newOwner": payload.newOwner.lower(), "transactionHash": receipt["transactionHash"]}


@router.put("/batches/{batch_id}/metadata")
async def update_metadata_endpoint(
    batch_id: int,
    payload: MetadataUpdate,
    signer: Signer = Depends(get_signer),
    client: BatchTrackerClient = Depends(get_batch_client),
):
    receipt = await client.update_metadata(signer, batch_id, payload.ipfsHash)
    return {"batchId": batch_id, "ipfsHash": payload.ipfsHash, "transactionHash": receipt["transactionHash"]}


# ================= READ =================

@router.get("/network")
async def network_endpoint(client: BatchTrackerClient = Depends(get_batch_client)):
    config = await client.resolve_contract()
    return {
        "chainId": config.chain_id,
        "name": get_network_name(config.chain_id),
        "contractAddress": config.address,
    }


@router.get("/batches")
async def total_batches_endpoint(client: BatchTrackerClient = Depends(get_batch_client)):
    return {"total": await client.get_total_batches()}


@router.get("/batches/{batch_id}", response_model=BatchInfo)
async def get_batch_endpoint(batch_id: int, client: BatchTrackerClient = Depends(get_batch_client)):
    return await client.get_batch_info_with_metadata(batch_id)


@router.get("/batches/{batch_id}/history")
async def owner_history_endpoint(batch_id: int, client: BatchTrackerClient = Depends(get_batch_client)):
    owners = await client.get_owner_history(batch_id)
    return {"batchId": batch_id, "owners": owners, "currentOwner": owners[-1]}


@router.get("/batches/{batch_id}/events", response_model=List[BatchEvent])
async def batch_events_endpoint(batch_id: int, client: BatchTrackerClient = Depends(get_batch_client)):
    if not await client.batch_exists(batch_id):
        raise NotFound(batch_id=batch_id)
    return await client.get_batch_events(batch_id)


@router.get("/batches/{batch_id}/owners/{address}")
async def was_owner_endpoint(batch_id: int, address: str, client: BatchTrackerClient = Depends(get_batch_client)):
    return {"batchId": batch_id, "address": address.lower(), "wasOwner": await client.was_owner(batch_id, address)}


@router.get("/owners/{address}/batches", response_model=List[BatchInfo])
async def owned_batches_endpoint(address: str, client: BatchTrackerClient = Depends(get_batch_client)):
    return await client.get_user_owned_batches(address)
