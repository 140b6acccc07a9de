import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import configure_logging
from app.errors import BatchTrackerError
# ROUTERS
from routes.batches import router as batch_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Grainchain Batch Tracker API")

# ================= CORS =================
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ================= ERRORS =================
# One status per error kind; bodies carry a human-readable message.
STATUS_BY_KIND = {
    "NotFound": 404,
    "Unauthorized": 403,
    "InvalidArgument": 400,
    "UnsupportedNetwork": 503,
    "TransientNetworkFailure": 503,
    "TransactionRejected": 409,
    "OffChainStorageFailure": 502,
}


@app.exception_handler(BatchTrackerError)
async def batch_tracker_error_handler(request: Request, exc: BatchTrackerError):
    status = STATUS_BY_KIND.get(exc.kind, 500)
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())

# ================= ROUTERS =================
app.include_router(batch_router)


@app.get("/")
async def root():
    return {"status": "ok", "message": "Grainchain Batch Tracker API is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
