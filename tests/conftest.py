"""Pytest configuration and shared fixtures."""

import hashlib
import json
import os

import httpx
import pytest

os.environ.setdefault("JWT_SECRET", "test-secret")

from app.blockchain_client import BatchTrackerClient, Signer
from app.chain import ChainNode, get_chain_node
from app.database import InMemoryMetadataIndex
from app.ipfs_handler import PinataService
from app.networks import write_deployment
from app.node import app as node_app
from utils.jwt import create_token

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
ZERO = "0x" + "0" * 40

PINATA_API = "https://api.pinata.test"
PINATA_GATEWAY = "https://gateway.pinata.test"


class FakeClock:
    """Deterministic wall clock; advances one second per reading."""

    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> float:
        self.now += 1
        return float(self.now)


class FakeIpfs:
    """In-memory Pinata API + gateway served through httpx.MockTransport."""

    def __init__(self):
        self.objects = {}
        self.requests = []
        self.fail_uploads = False
        self.fail_file_uploads = False
        self.fail_reads = False

    def _pin(self, content: bytes, content_type: str, prefix: str) -> httpx.Response:
        cid = prefix + hashlib.sha256(content).hexdigest()[:46]
        self.objects[cid] = (content_type, content)
        return httpx.Response(200, json={"IpfsHash": cid, "PinSize": len(content), "Timestamp": "2026-01-01T00:00:00Z"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/pinning/pinJSONToIPFS"):
            if self.fail_uploads:
                return httpx.Response(500, text="pinata unavailable")
            body = json.loads(request.content)
            content = json.dumps(body["pinataContent"], sort_keys=True).encode()
            return self._pin(content, "application/json", "bafkrei")

        if path.endswith("/pinning/pinFileToIPFS"):
            if self.fail_uploads or self.fail_file_uploads:
                return httpx.Response(500, text="pinata unavailable")
            return self._pin(request.content, "image/png", "bafybei")

        if path.startswith("/ipfs/"):
            if self.fail_reads:
                return httpx.Response(504, text="gateway timeout")
            cid = path.rsplit("/", 1)[-1]
            if cid not in self.objects:
                return httpx.Response(404, text="not found")
            content_type, content = self.objects[cid]
            return httpx.Response(200, content=content, headers={"content-type": content_type})

        return httpx.Response(404)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def node(clock):
    return ChainNode(chain_id=31337, network_name="hardhat", block_time=0, clock=clock)


@pytest.fixture
def node_asgi(node):
    node_app.dependency_overrides[get_chain_node] = lambda: node
    yield node_app
    node_app.dependency_overrides.clear()


@pytest.fixture
def deployments_dir(tmp_path):
    return tmp_path / "deployments"


@pytest.fixture
def contract_address(node, deployments_dir):
    deployment = node.deploy(ALICE)
    write_deployment(node.chain_id, deployment["address"], ALICE, deployment["transactionHash"], deployments_dir)
    return deployment["address"]


@pytest.fixture
def ipfs():
    return FakeIpfs()


@pytest.fixture
def pinata(ipfs):
    return PinataService(
        jwt="test-jwt",
        gateway=PINATA_GATEWAY,
        api_url=PINATA_API,
        transport=httpx.MockTransport(ipfs.handler),
    )


@pytest.fixture
def metadata_index():
    return InMemoryMetadataIndex()


@pytest.fixture
def client(node_asgi, contract_address, deployments_dir, pinata, metadata_index):
    return BatchTrackerClient(
        node_url="http://node.test",
        pinata=pinata,
        metadata_index=metadata_index,
        confirm_timeout=0.5,
        poll_interval=0.01,
        deployments_dir=deployments_dir,
        transport=httpx.ASGITransport(app=node_asgi),
    )


@pytest.fixture
def alice():
    return Signer(ALICE, create_token(ALICE))


@pytest.fixture
def bob():
    return Signer(BOB, create_token(BOB))
