#!/usr/bin/env python
"""FastAPI server for the storyreel web interface."""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Add src directory to Python path for imports
src_dir = Path(__file__).parent.parent
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from api.dependencies import get_config, start_services, stop_services
from api.routers import core, generation, uploads
from utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the run store and transports; close them on shutdown."""
    await start_services()
    yield
    await stop_services()


def create_app() -> FastAPI:
    """Build the application with routers and the static output mount."""
    config = get_config()
    setup_logging(config["log_level"], json_output=config["log_json"])

    app = FastAPI(title="storyreel API", version="1.0.0", lifespan=lifespan)

    # CORS middleware for development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],  # Vite default port
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(core.router)
    app.include_router(uploads.router)
    app.include_router(generation.router)

    output_dir = Path(config["output_dir"])
    output_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/output", StaticFiles(directory=str(output_dir)), name="output")

    logger.info(f"Serving rendered videos from {output_dir}")
    return app


app = create_app()
