# deploy_ledger.py
import os
import sys
import asyncio
import logging
import httpx

from app.config import NODE_URL, configure_logging
from app.networks import get_network_name, write_deployment
from utils.jwt import create_token

logger = logging.getLogger("deploy")

DEPLOYER_ADDRESS = os.getenv("DEPLOYER_ADDRESS", "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266")


async def deploy(node_url: str = NODE_URL, deployer: str = DEPLOYER_ADDRESS, deployments_dir=None, transport=None) -> dict:
    """Deploys a BatchTracker on the node and writes the network's deployment descriptor."""
    logger.info("Starting BatchTracker deployment on %s", node_url)
    headers = {"Authorization": f"Bearer {create_token(deployer)}"}

    async with httpx.AsyncClient(base_url=node_url, timeout=15.0, transport=transport) as client:
        resp = await client.get("/chain")
        resp.raise_for_status()
        chain = resp.json()
        logger.info("Deploying with account %s on %s", deployer, get_network_name(chain["chainId"]))

        resp = await client.post("/deployments", headers=headers)
        resp.raise_for_status()
        deployment = resp.json()

        # read back through the new address
        total = await client.post(
            f"/contracts/{deployment['address']}/call",
            json={"method": "getTotalBatches", "args": []},
        )
        total.raise_for_status()
        logger.info("Initial total batches: %s", total.json()["result"])

    path = write_deployment(chain["chainId"], deployment["address"], deployer.lower(), deployment["transactionHash"], deployments_dir)
    logger.info("BatchTracker deployed to %s (descriptor %s)", deployment["address"], path)
    return deployment


if __name__ == "__main__":
    configure_logging()
    try:
        asyncio.run(deploy())
    except Exception as e:
        logger.error("Deployment failed: %s", e)
        sys.exit(1)
