# Web front end - FastAPI backend
#
# Two protected endpoints (encrypt, decrypt) under /api/backups plus the
# unprotected /api/session bootstrap that hands the per-process token to
# the local frontend.

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .backup_routes import router as backup_router
from .security import get_api_token, initialize_api_token

logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Portwarden API",
    description="Encrypted backup and decrypt for Bitwarden vaults",
    version=__version__,
)

# Local frontends only.
_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(backup_router)


@app.on_event("startup")
async def startup_event():
    """Generate the API token for this process."""
    initialize_api_token()
    logger.info("API token initialized")


@app.get("/api/session")
async def get_session():
    """
    Get the API token for the X-Session-Token header.

    Unprotected: the frontend needs it to authenticate.
    """
    return {
        "api_token": get_api_token()
    }


@app.get("/api")
async def api_root():
    return {"name": "portwarden", "version": __version__}


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
