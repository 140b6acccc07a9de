"""Tests for network resolution and deployment descriptors."""

import json

import pytest

from app.errors import UnsupportedNetwork
from app.networks import get_contract_config, get_network_name, load_deployment, write_deployment
from tests.conftest import ALICE

ADDRESS = "0x" + "5F" * 20


class TestNetworks:
    def test_known_names(self):
        assert get_network_name(1337) == "Localhost"
        assert get_network_name(31337) == "Hardhat"
        assert get_network_name(5) == "Unknown Network (5)"

    def test_unsupported_chain_fails_fast(self, tmp_path):
        with pytest.raises(UnsupportedNetwork, match="ChainId: 1"):
            get_contract_config(1, tmp_path)

    def test_missing_descriptor_is_unsupported(self, tmp_path):
        assert load_deployment(31337, tmp_path) == {}
        with pytest.raises(UnsupportedNetwork, match="BatchTracker contract not found"):
            get_contract_config(31337, tmp_path)

    def test_corrupt_descriptor_is_unsupported(self, tmp_path):
        (tmp_path / "hardhat.json").write_text("{not json")

        with pytest.raises(UnsupportedNetwork):
            get_contract_config(31337, tmp_path)

    def test_written_descriptor_resolves(self, tmp_path):
        path = write_deployment(1337, ADDRESS, ALICE, "0xabc", tmp_path)

        descriptor = json.loads(path.read_text())
        assert path.name == "localhost.json"
        assert descriptor["network"] == "localhost"
        assert descriptor["chainId"] == 1337
        assert descriptor["contracts"]["BatchTracker"]["address"] == ADDRESS

        config = get_contract_config(1337, tmp_path)
        assert config.address == ADDRESS.lower()
        assert config.network_name == "Localhost"
        assert "createBatch" in config.abi["functions"]

    def test_descriptors_are_per_network(self, tmp_path):
        write_deployment(1337, ADDRESS, ALICE, "0xabc", tmp_path)

        with pytest.raises(UnsupportedNetwork):
            get_contract_config(31337, tmp_path)
