# app/config.py
import os
import logging
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

# ================= CHAIN NODE =================
NODE_URL = os.getenv("NODE_URL", "http://127.0.0.1:8545")
CHAIN_ID = int(os.getenv("CHAIN_ID", "31337"))
NETWORK_NAME = os.getenv("NETWORK_NAME", "hardhat")
# 0 = automine (every transaction gets its own block)
BLOCK_TIME = float(os.getenv("BLOCK_TIME", "0"))
DEPLOYMENTS_DIR = Path(os.getenv("DEPLOYMENTS_DIR", str(BASE_DIR / "deployments")))

# ================= CLIENT =================
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10.0"))
CONFIRM_TIMEOUT = float(os.getenv("CONFIRM_TIMEOUT", "60.0"))
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "0.5"))

# ================= PINATA / IPFS =================
PINATA_API_KEY = os.getenv("PINATA_API_KEY")
PINATA_SECRET_KEY = os.getenv("PINATA_SECRET_KEY")
PINATA_JWT = os.getenv("PINATA_JWT")
PINATA_API_URL = os.getenv("PINATA_API_URL", "https://api.pinata.cloud")
PINATA_GATEWAY = os.getenv("PINATA_GATEWAY", "https://gateway.pinata.cloud")

# ================= MONGODB =================
MONGO_URI = os.getenv("MONGO_URI")
MONGO_DB = os.getenv("MONGO_DB", "grainchain_db")

# ================= JWT =================
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "1440"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
