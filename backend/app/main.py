import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api.routes.matters import router as matters_router
from backend.app.api.routes.me import router as me_router
from backend.app.api.routes.templates import router as templates_router


logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    else:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    if not any(origin in origins for origin in ("http://localhost:3000", "http://127.0.0.1:3000")):
        logger.warning("CORS allowlist does not include local dev origins: %s", origins)
    return origins


app = FastAPI(title="Casework API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(me_router)
app.include_router(templates_router)
app.include_router(matters_router)
