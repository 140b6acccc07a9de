# app/models/batch.py

from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional, Union
from datetime import datetime, timezone

METADATA_VERSION = "1.0"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Attribute(BaseModel):
    trait_type: str
    value: Union[str, int, float]


class BatchProperties(BaseModel):
    origin: Optional[str] = None
    quality_grade: Optional[str] = None
    harvest_date: Optional[str] = None
    expiry_date: Optional[str] = None
    weight: Optional[str] = None
    location: Optional[str] = None
    certifications: List[str] = []


class BatchMetadata(BaseModel):
    """Off-chain description of a batch, pinned to IPFS as JSON."""

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    created_at: str = Field(default_factory=_utcnow_iso)
    version: str = METADATA_VERSION
    image: Optional[str] = None
    attributes: List[Attribute] = []
    batch_properties: BatchProperties = Field(default_factory=BatchProperties)
    external_url: Optional[str] = None

    @field_validator("name", "description")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class BatchFormData(BaseModel):
    name: str
    description: str
    origin: Optional[str] = None
    quality_grade: Optional[str] = None
    harvest_date: Optional[str] = None
    expiry_date: Optional[str] = None
    weight: Optional[str] = None
    location: Optional[str] = None
    certifications: List[str] = []
    external_url: Optional[str] = None
    attributes: List[Attribute] = []

    def batch_properties(self) -> BatchProperties:
        return BatchProperties(
            origin=self.origin,
            quality_grade=self.quality_grade,
            harvest_date=self.harvest_date,
            expiry_date=self.expiry_date,
            weight=self.weight,
            location=self.location,
            certifications=self.certifications,
        )


class ImageUpload(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class BatchInfo(BaseModel):
    batchId: int
    currentOwner: str
    ownerCount: int
    createdAt: int
    lastTransferAt: int
    ipfsHash: Optional[str] = None
    metadata: Optional[BatchMetadata] = None

    @classmethod
    def from_result(cls, result: List[Any]) -> "BatchInfo":
        return cls(
            batchId=int(result[0]),
            currentOwner=result[1],
            ownerCount=int(result[2]),
            createdAt=int(result[3]),
            lastTransferAt=int(result[4]),
            ipfsHash=result[5] or None,
        )


class BatchEvent(BaseModel):
    event: str
    batchId: int
    blockNumber: Optional[int] = None
    transactionHash: Optional[str] = None
    args: Dict[str, Any] = Field(description="Decoded event fields as emitted by the ledger.")
