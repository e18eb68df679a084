import asyncio
import logging
import os

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from docqa.api import router as documents_router
from docqa.config import Settings
from docqa.llm_provider import LLMError, LLMStub, get_llm, get_llm_status, load_llm_on_startup
from docqa.logging_config import configure_logging
from docqa.telemetry import log_event

SETTINGS = Settings.from_env()
configure_logging(SETTINGS.log_dir, SETTINGS.log_level)

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Document QA API")
app.include_router(documents_router)


@app.on_event("startup")
async def _startup_model_loader() -> None:
    """Optionally preload the local LLM when requested via environment flags."""

    log_event(LOGGER, "app.startup", details={"force_load": os.getenv("FORCE_LOAD_ON_START")})
    attempted, error = await asyncio.to_thread(load_llm_on_startup)
    if attempted and error is not None:
        LOGGER.warning("Model preload failed: %s", error)


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck() -> str:
    """Readiness for question answering; ingestion works without a model."""
    status = get_llm_status()
    if not status.model_loaded:
        detail = status.error or "LLM model is not loaded"
        raise HTTPException(status_code=503, detail=detail)

    return "ok"


def _status_payload() -> dict[str, object]:
    status = get_llm_status()
    payload: dict[str, object] = {
        "model_loaded": status.model_loaded,
        "model_name": status.model_name,
        "device": status.device,
    }
    if status.error:
        payload["reason"] = status.error
    return payload


@app.get("/model_status")
def model_status() -> dict[str, object]:
    """Expose lazy model loading status."""

    return _status_payload()


@app.post("/model/load")
async def load_model() -> dict[str, object]:
    """Load the configured model so that questions can be answered."""

    llm = get_llm()
    if isinstance(llm, LLMStub):
        raise HTTPException(status_code=503, detail=llm.last_error or "No model configured")
    try:
        await asyncio.to_thread(llm.preload)
    except LLMError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _status_payload()
