import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

from sync_api.rpc import rpc_router
from sync_api.services.auth import AuthService
from sync_api.services.progress import ProgressService
from sync_api.sync import sync_router
from sync_common.uvicorn import EndpointFilter

load_dotenv()

CORS_REGEX = os.getenv("CORS_REGEX", r"(https?://)?(localhost|127\.0\.0\.1)(:\d+)?")


@asynccontextmanager
async def lifespan(app: FastAPI):
    load_dotenv()

    # Initialize services.
    AuthService()
    ProgressService()

    # Devices poll every few seconds, keep the access log readable.
    EndpointFilter.add_filter("/api/")
    EndpointFilter.add_filter("/api/sync/all")
    yield
    ProgressService.reset()
    AuthService.reset()

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=CORS_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware)

base_url_router = APIRouter(prefix="/api")

@base_url_router.get("/")
def health():
    return {"status": "ok"}


base_url_router.include_router(sync_router, prefix="/sync")
base_url_router.include_router(rpc_router, prefix="/rpc")
app.include_router(base_url_router)
