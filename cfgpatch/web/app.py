"""
FastAPI application for the cfgpatch HTTP API.

Run with: uvicorn cfgpatch.web.app:app
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .routers import documents, mcus, state


def create_app() -> FastAPI:
    app = FastAPI(
        title="cfgpatch API",
        version=__version__,
        description="Patch Klipper printer configs against a settings snapshot",
    )

    # Local network UI; restrict origins when exposing the API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(state.router, prefix="/api", tags=["state"])
    app.include_router(documents.router, prefix="/api", tags=["documents"])
    app.include_router(mcus.router, prefix="/api", tags=["mcus"])

    @app.get("/")
    def root():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
