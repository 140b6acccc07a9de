# app/node.py
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.chain import NodeError, get_chain_node
from app.config import configure_logging
from routes.chain import router as chain_router

logger = logging.getLogger(__name__)


async def _mine_blocks(interval: float):
    node = get_chain_node()
    while True:
        await asyncio.sleep(interval)
        if node.pending_count:
            await asyncio.to_thread(node.mine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    node = get_chain_node()
    logger.info("[CHAIN] Node up: chainId=%s network=%s", node.chain_id, node.network_name)

    miner = None
    if not node.automine:
        logger.info("[CHAIN] Interval mining every %ss", node.block_time)
        miner = asyncio.create_task(_mine_blocks(node.block_time))
    yield
    if miner is not None:
        miner.cancel()


app = FastAPI(title="Grainchain Node", lifespan=lifespan)


@app.exception_handler(NodeError)
async def node_error_handler(request: Request, exc: NodeError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ================= ROUTERS =================
app.include_router(chain_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8545)
