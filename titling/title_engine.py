"""
title_engine.py -- FastAPI application for title generation.

Runs on TITLE_ENGINE_PORT (default 3002). Stateless: every request carries
the recording metadata it needs. The title policy is loaded once at startup;
a policy that fails to load aborts the service.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from processing.models import RecordingMetadata
from processing.search import RecordingSearcher
from titling.address import attach_location, canonicalize_address
from titling.anthropic_generator import AnthropicTextGenerator
from titling.candidates import TextGenerator
from titling.errors import PolicyLoadError
from titling.policy import TitlePolicy, load_policy
from titling.scorer import ScoredCandidate
from titling.title_guide import generate_title

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("title_engine")

TITLE_ENGINE_PORT: int = int(os.getenv("TITLE_ENGINE_PORT", "3002"))
TITLE_POLICY_PATH: Optional[str] = os.getenv("TITLE_POLICY_PATH") or None
SERVICE_VERSION: str = "0.1.0"


class TitleRequest(BaseModel):
    """Request body for the /title endpoint."""
    recording: RecordingMetadata
    weights: Optional[dict[str, int]] = Field(
        default=None, description="Tag -> occurrence count; omit to use the stored tag order",
    )


class TitleData(BaseModel):
    """Generated title payload."""
    title: str
    baseTitle: str
    refused: bool
    candidates: list[ScoredCandidate]


class AddressRequest(BaseModel):
    address: str


class SearchRequest(BaseModel):
    """Request body for the /search endpoint."""
    query: str
    recordings: list[RecordingMetadata]
    useModel: bool = Field(default=False, description="Fall back to model-scored similarity")


class EngineResponse(BaseModel):
    """Standard engine API response envelope."""
    success: bool
    data: TitleData | dict[str, Any] | None = None
    error: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""
    success: bool
    version: str = SERVICE_VERSION


title_policy: TitlePolicy | None = None
text_generator: TextGenerator | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Load the title policy and the Claude-backed generator."""
    global title_policy, text_generator
    try:
        title_policy = load_policy(TITLE_POLICY_PATH)
    except PolicyLoadError as exc:
        logger.critical("Title policy failed to load: %s", exc)
        raise
    if os.getenv("ANTHROPIC_API_KEY"):
        text_generator = AnthropicTextGenerator()
    else:
        logger.warning("ANTHROPIC_API_KEY not set -- title generation unavailable")
    logger.info("Title Engine started (policy=%s)", title_policy.policy_version)
    yield
    text_generator = None
    logger.info("Title Engine shut down")


app = FastAPI(
    title="Audiolog Title Engine",
    description="Short descriptive titles for audio recordings",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_policy() -> TitlePolicy:
    if title_policy is None:
        raise HTTPException(status_code=503, detail="Title policy not loaded")
    return title_policy


def get_generator() -> TextGenerator:
    if text_generator is None:
        raise HTTPException(status_code=503, detail="Text generator not configured")
    return text_generator


def get_optional_generator() -> Optional[TextGenerator]:
    return text_generator


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(success=True)


@app.get("/policy", response_model=EngineResponse)
async def describe_policy(policy: TitlePolicy = Depends(get_policy)) -> EngineResponse:
    """Version, language and rule kinds of the loaded policy."""
    return EngineResponse(
        success=True,
        data={
            "policyVersion": policy.policy_version,
            "lang": policy.lang,
            "specialCases": policy.special_case_kinds,
            "fewShots": len(policy.few_shots),
        },
    )


@app.post("/title", response_model=EngineResponse)
async def create_title(
    body: TitleRequest,
    policy: TitlePolicy = Depends(get_policy),
    generator: TextGenerator = Depends(get_generator),
) -> EngineResponse:
    """Generate a title for one recording."""
    outcome = await generate_title(body.recording, generator, policy, weights=body.weights)
    if outcome.title is None:
        logger.warning("No title produced for recording %s", body.recording.id)
        return EngineResponse(success=False, error="Failed to generate a title. Please try again.")

    title = attach_location(outcome.title, body.recording.location)
    logger.info("Title delivered: recording='%s', title='%s'", body.recording.id, title)
    return EngineResponse(
        success=True,
        data=TitleData(
            title=title,
            baseTitle=outcome.title,
            refused=outcome.refused,
            candidates=outcome.candidates,
        ),
    )


@app.post("/address", response_model=EngineResponse)
async def canonical_address(body: AddressRequest) -> EngineResponse:
    """Reduce a Korean address to its '<city> <unit>' form."""
    return EngineResponse(
        success=True,
        data={"address": body.address, "canonical": canonicalize_address(body.address)},
    )


@app.post("/search", response_model=EngineResponse)
async def search_recordings(
    body: SearchRequest,
    generator: Optional[TextGenerator] = Depends(get_optional_generator),
) -> EngineResponse:
    """Return ids of the recordings matching the query, in request order."""
    searcher = RecordingSearcher(generator if body.useModel else None)
    matched = await searcher.search(body.query, body.recordings)
    logger.info("Search '%s': %d of %d matched", body.query, len(matched), len(body.recordings))
    return EngineResponse(
        success=True,
        data={"matches": [r.id for r in matched], "total": len(matched)},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("titling.title_engine:app", host="0.0.0.0", port=TITLE_ENGINE_PORT)
