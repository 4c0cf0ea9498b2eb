"""
FastAPI action-dispatch endpoint for BridgeScore - Cloud Run deployment
"""

import asyncio
import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
import uvicorn

from bridgescore.bq_loader import BigQueryLoader
from bridgescore.config_resolver import ConfigResolver, TenantConfigSource, YamlTenantConfigSource
from bridgescore.coordinator import ScoringCoordinator
from bridgescore.errors import CallNotFoundError, InvalidRequestError
from bridgescore.recorder import CallRepository, ScoreRecorder

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Failed to process request"

# Initialize FastAPI app
app = FastAPI(
    title="BridgeScore - Call Scoring API",
    description="Bridge Selling scorecards for sales call transcripts",
    version="1.0.0"
)


class ActionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action: str
    transcript: Optional[str] = None
    organization_id: Optional[str] = None
    call_id: Optional[str] = None
    actor_id: Optional[str] = None


def error_response(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


def client_message(error: Exception) -> str:
    if isinstance(error, (InvalidRequestError, CallNotFoundError)):
        return str(error)
    return GENERIC_ERROR_MESSAGE


# Dependencies, overridden in tests
RepositoryFactory = Callable[[], CallRepository]


def get_repository_factory() -> RepositoryFactory:
    # Only rescore_call uses storage
    return BigQueryLoader


def get_tenant_source() -> TenantConfigSource:
    if os.getenv("TENANT_CONFIG_SOURCE", "yaml") == "bigquery":
        return BigQueryLoader()
    return YamlTenantConfigSource(Path(os.getenv("TENANT_CONFIG_PATH", "tenants.yaml")))


def get_coordinator(source: TenantConfigSource = Depends(get_tenant_source)) -> ScoringCoordinator:
    return ScoringCoordinator(ConfigResolver(source))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Rejected malformed request: {exc.errors()}")
    return error_response("Invalid request body")


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint"""
    return {
        "message": "BridgeScore Call Scoring API",
        "status": "healthy",
        "version": "1.0.0"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Cloud Run"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "bridgescore-api",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


@app.post("/", tags=["Scoring"])
async def dispatch_action(
    request: ActionRequest,
    coordinator: ScoringCoordinator = Depends(get_coordinator),
    repository_factory: RepositoryFactory = Depends(get_repository_factory),
):
    """
    Single action endpoint:
    - score_call: {transcript, organizationId} -> CallScore
    - rescore_call: {callId, actorId?} -> CallScore (saved, audited)
    """
    try:
        if request.action == "score_call":
            result = await coordinator.score_call(request.transcript, request.organization_id)
        elif request.action == "rescore_call":
            if not request.call_id:
                raise InvalidRequestError("callId is required")
            # Client construction reads credential files
            repository = await asyncio.to_thread(repository_factory)
            recorder = ScoreRecorder(repository, coordinator)
            result = await recorder.rescore(request.call_id, request.actor_id)
        else:
            raise InvalidRequestError(f"Unknown action: {request.action}")
    except Exception as e:
        logger.error(f"Action {request.action} failed: {type(e).__name__}: {e}")
        return error_response(client_message(e))

    return result.to_json_dict()


if __name__ == "__main__":
    # For local development
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        log_level="info"
    )
