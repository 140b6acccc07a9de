"""Tests for the gateway API."""

import json

import pytest
from fastapi.testclient import TestClient

from app.main import app
from routes.batches import get_batch_client
from tests.conftest import ALICE, BOB, CAROL, ZERO
from utils.jwt import create_token


def auth(address):
    return {"Authorization": f"Bearer {create_token(address)}"}


@pytest.fixture
def api(client):
    app.dependency_overrides[get_batch_client] = lambda: client
    yield TestClient(app)
    app.dependency_overrides.pop(get_batch_client, None)


def create_raw(api, address=ALICE, ipfs_hash=""):
    resp = api.post("/api/batches/raw", json={"ipfsHash": ipfs_hash}, headers=auth(address))
    assert resp.status_code == 200
    return resp.json()["batchId"]


class TestGateway:
    def test_root(self, api):
        assert api.get("/").json()["status"] == "ok"

    def test_network(self, api, contract_address):
        assert api.get("/api/network").json() == {
            "chainId": 31337,
            "name": "Hardhat",
            "contractAddress": contract_address,
        }

    def test_writes_require_token(self, api):
        resp = api.post("/api/batches/raw", json={"ipfsHash": ""})

        assert resp.status_code == 401


class TestBatchEndpoints:
    def test_create_with_form(self, api, ipfs):
        resp = api.post(
            "/api/batches",
            data={
                "name": "Wheat lot 42",
                "description": "Hard red winter wheat",
                "origin": "Kansas",
                "certifications": "organic, non-gmo ,",
                "attributes_json": json.dumps([{"trait_type": "moisture", "value": "12%"}]),
            },
            files={"image": ("lot.png", b"\x89PNG", "image/png")},
            headers=auth(ALICE),
        )

        assert resp.status_code == 200
        batch_id = resp.json()["batchId"]

        body = api.get(f"/api/batches/{batch_id}").json()
        assert body["currentOwner"] == ALICE
        assert body["metadata"]["batch_properties"]["certifications"] == ["organic", "non-gmo"]
        assert body["metadata"]["attributes"] == [{"trait_type": "moisture", "value": "12%"}]
        assert body["metadata"]["image"].startswith("https://gateway.pinata.test/ipfs/bafybei")

    def test_bad_attributes_json(self, api):
        resp = api.post(
            "/api/batches",
            data={"name": "Lot", "description": "Desc", "attributes_json": "{oops"},
            headers=auth(ALICE),
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidArgument"

    def test_blank_name_is_rejected(self, api, ipfs):
        resp = api.post("/api/batches", data={"name": " ", "description": "Desc"}, headers=auth(ALICE))

        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidArgument"
        assert ipfs.objects == {}

    def test_storage_outage(self, api, ipfs):
        ipfs.fail_uploads = True

        resp = api.post("/api/batches", data={"name": "Lot", "description": "Desc"}, headers=auth(ALICE))

        assert resp.status_code == 502
        assert resp.json()["retryable"] is True
        assert api.get("/api/batches").json() == {"total": 0}

    def test_transfer_and_history(self, api):
        batch_id = create_raw(api)

        resp = api.post(f"/api/batches/{batch_id}/transfer", json={"newOwner": BOB.upper().replace("0X", "0x")}, headers=auth(ALICE))

        assert resp.status_code == 200
        assert resp.json()["newOwner"] == BOB
        assert resp.json()["transactionHash"].startswith("0x")
        history = api.get(f"/api/batches/{batch_id}/history").json()
        assert history == {"batchId": batch_id, "owners": [ALICE, BOB], "currentOwner": BOB}
        assert api.get(f"/api/batches/{batch_id}/owners/{ALICE}").json()["wasOwner"] is True
        assert api.get(f"/api/batches/{batch_id}/owners/{CAROL}").json()["wasOwner"] is False

    def test_non_owner_transfer_is_forbidden(self, api):
        batch_id = create_raw(api)

        resp = api.post(f"/api/batches/{batch_id}/transfer", json={"newOwner": CAROL}, headers=auth(BOB))

        assert resp.status_code == 403
        assert resp.json()["error"] == "Unauthorized"
        assert ALICE in resp.json()["detail"]

    def test_zero_owner_is_bad_request(self, api):
        batch_id = create_raw(api)

        resp = api.post(f"/api/batches/{batch_id}/transfer", json={"newOwner": ZERO}, headers=auth(ALICE))

        assert resp.status_code == 400

    def test_update_metadata(self, api):
        batch_id = create_raw(api, ipfs_hash="bafkreiold")

        resp = api.put(f"/api/batches/{batch_id}/metadata", json={"ipfsHash": "bafkreinew"}, headers=auth(ALICE))

        assert resp.status_code == 200
        assert api.get(f"/api/batches/{batch_id}").json()["ipfsHash"] == "bafkreinew"

    def test_missing_batch(self, api):
        assert api.get("/api/batches/12").status_code == 404
        assert api.get("/api/batches/12/history").status_code == 404
        assert api.get("/api/batches/12/events").status_code == 404

    def test_events(self, api):
        batch_id = create_raw(api)
        api.post(f"/api/batches/{batch_id}/transfer", json={"newOwner": BOB}, headers=auth(ALICE))

        events = api.get(f"/api/batches/{batch_id}/events").json()

        assert [e["event"] for e in events] == ["BatchCreated", "BatchTransferred"]

    def test_owned_batches(self, api):
        create_raw(api)
        second = create_raw(api, BOB)
        create_raw(api)

        owned = api.get(f"/api/owners/{BOB}/batches").json()

        assert [b["batchId"] for b in owned] == [second]
        assert api.get("/api/batches").json() == {"total": 3}

    def test_wrong_network_is_unavailable(self, api, node):
        node.chain_id = 5

        resp = api.get("/api/batches")

        assert resp.status_code == 503
        assert resp.json()["error"] == "UnsupportedNetwork"
