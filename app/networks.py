# app/networks.py
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from app.config import DEPLOYMENTS_DIR
from app.errors import UnsupportedNetwork
from app.ledger import BATCH_TRACKER_ABI, is_address

logger = logging.getLogger(__name__)

# ================= NETWORKS =================

NETWORKS = {
    1337: {
        "chain_id": 1337,
        "name": "Localhost",
        "rpc_url": "http://127.0.0.1:8545",
        "deployment": "localhost.json",
    },
    31337: {
        "chain_id": 31337,
        "name": "Hardhat",
        "rpc_url": "http://127.0.0.1:8545",
        "deployment": "hardhat.json",
    },
}


@dataclass(frozen=True)
class ContractConfig:
    chain_id: int
    network_name: str
    address: str
    abi: dict


def get_network_name(chain_id: int) -> str:
    network = NETWORKS.get(chain_id)
    return network["name"] if network else f"Unknown Network ({chain_id})"


def _supported() -> str:
    return ", ".join(str(cid) for cid in NETWORKS)


def load_deployment(chain_id: int, deployments_dir: Path | None = None) -> dict:
    network = NETWORKS.get(chain_id)
    if network is None:
        raise UnsupportedNetwork(f"Unsupported network. ChainId: {chain_id}. Supported networks: {_supported()}")

    path = Path(deployments_dir or DEPLOYMENTS_DIR) / network["deployment"]
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        logger.error("[CONFIG] Corrupt deployment descriptor %s: %s", path, e)
        return {}


def get_contract_config(chain_id: int, deployments_dir: Path | None = None) -> ContractConfig:
    """Selects the deployed BatchTracker for the active chain or fails fast."""
    deployment = load_deployment(chain_id, deployments_dir)
    address = deployment.get("contracts", {}).get("BatchTracker", {}).get("address")
    if not is_address(address):
        raise UnsupportedNetwork(f"BatchTracker contract not found in deployment for chainId {chain_id}")

    return ContractConfig(
        chain_id=chain_id,
        network_name=get_network_name(chain_id),
        address=address.lower(),
        abi=BATCH_TRACKER_ABI,
    )


def write_deployment(chain_id: int, address: str, deployer: str, transaction_hash: str, deployments_dir: Path | None = None) -> Path:
    network = NETWORKS.get(chain_id)
    if network is None:
        raise UnsupportedNetwork(f"Unsupported network. ChainId: {chain_id}. Supported networks: {_supported()}")

    directory = Path(deployments_dir or DEPLOYMENTS_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / network["deployment"]
    descriptor = {
        "network": network["name"].lower(),
        "chainId": chain_id,
        "deployer": deployer,
        "deploymentTime": datetime.now(timezone.utc).isoformat(),
        "transactionHash": transaction_hash,
        "contracts": {"BatchTracker": {"address": address}},
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(descriptor, f, indent=2)
    logger.info("[CONFIG] Wrote deployment descriptor %s", path)
    return path
