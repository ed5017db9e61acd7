"""Verum Seal HTTP server with API endpoints."""

from __future__ import annotations

import base64
import binascii
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi import status as http_status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from verumseal import __version__
from verumseal.bundle import REPORT_FILENAME
from verumseal.config import SealConfig
from verumseal.engine import SealingEngine
from verumseal.errors import SealError, StagingError, VerificationError
from verumseal.keys import CURVE_NAME
from verumseal.models import EvidenceFile, Geolocation, Manifest
from verumseal.review import build_review_request
from verumseal.server_security import (
    AuthenticationError,
    ErrorCategory,
    ErrorEnvelope,
    RequestContextMiddleware,
    check_bearer_token,
    classify_exception,
)
from verumseal.signing import verify_manifest
from verumseal.stamp import verify_stamp

logger = logging.getLogger(__name__)

SECURITY_BEARER = HTTPBearer(auto_error=False)
SECURITY_BEARER_DEPENDENCY = Depends(SECURITY_BEARER)


class EvidenceFilePayload(BaseModel):
    """Evidence file delivered as base64."""

    name: str = Field(min_length=1)
    mime_type: str = "application/octet-stream"
    data: str


class GeolocationPayload(BaseModel):
    latitude: float
    longitude: float


class SealRequest(BaseModel):
    """Request model for the seal endpoint."""

    narrative_text: str
    files: list[EvidenceFilePayload] = Field(default_factory=list)
    geolocation: GeolocationPayload | None = None
    generated_at: datetime | None = None


class SealResponse(BaseModel):
    """Sealed report, document as base64."""

    manifest: dict[str, Any]
    signature: str
    document_base64: str
    document_digest: str
    page_count: int
    verification_image_embedded: bool
    file_name: str = REPORT_FILENAME


class VerifyRequest(BaseModel):
    """Request model for the verify endpoint."""

    manifest: dict[str, Any]
    signature: str
    public_key_pem: str | None = None
    document_base64: str | None = None
    document_digest: str | None = None


class ReviewRequest(BaseModel):
    narrative_text: str
    manifest: dict[str, Any]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str


def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = SECURITY_BEARER_DEPENDENCY,
) -> bool:
    """Verify API key authentication.

    Returns:
        True if authentication successful or disabled

    Raises:
        AuthenticationError: If authentication fails and is required
    """
    expected_key = os.environ.get("VERUMSEAL_API_KEY")

    # If no API key configured, authentication is disabled (with warning)
    if not expected_key:
        return True

    check_bearer_token(credentials.credentials if credentials else None, expected_key)
    return True


def _decode_base64(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid base64 in {what}",
        ) from err


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan."""
    logger.info("Verum Seal server starting up")

    if not os.environ.get("VERUMSEAL_API_KEY"):
        logger.warning(
            "VERUMSEAL_API_KEY not set - API authentication is DISABLED. This is INSECURE for production deployments."
        )
    else:
        logger.info("API authentication enabled")

    yield
    # The session ends with the process: drop the device key
    app.state.engine.discard_session()
    logger.info("Verum Seal server shutting down")


def create_app(
    config: SealConfig | None = None,
    engine: SealingEngine | None = None,
    debug: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Sealing configuration (default: from environment)
        engine: Pre-built engine, mainly for tests
        debug: Include tracebacks in error responses

    Returns:
        Configured FastAPI application
    """
    config = config or SealConfig.from_env()
    engine = engine or SealingEngine(config=config)

    app = FastAPI(
        title="Verum Seal API",
        description="Evidence sealing and forensic certification",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(RequestContextMiddleware)

    async def error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Render any handled exception as an error envelope."""
        error_class = classify_exception(exc)
        if error_class.category is ErrorCategory.SEAL:
            logger.error("Seal failed at stage %s", error_class.stage, exc_info=exc)
        envelope = ErrorEnvelope.from_exception(
            exc,
            request_id=getattr(request.state, "request_id", "unknown"),
            error_class=error_class,
            include_traceback=debug,
        )
        return JSONResponse(status_code=error_class.status_code, content=envelope.to_dict())

    for exc_type in (
        SealError,
        VerificationError,
        AuthenticationError,
        StarletteHTTPException,
        RequestValidationError,
    ):
        app.add_exception_handler(exc_type, error_handler)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            timestamp=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        )

    @app.get("/api/v1/device")
    def device(_auth: bool = Depends(verify_api_key)):
        """Public identity of this session's device key."""
        key_pair = engine.key_manager.ensure_key_pair()
        return {
            "curve": CURVE_NAME,
            "public_key_pem": key_pair.public_key_pem,
            "device_id_fingerprint": key_pair.fingerprint,
        }

    @app.post("/api/v1/seal", response_model=SealResponse)
    def seal(payload: SealRequest, _auth: bool = Depends(verify_api_key)):
        """Seal a narrative and its evidence files."""
        limits = engine.config.limits
        files = [
            EvidenceFile.from_base64(f.name, f.mime_type, f.data, limits)
            for f in payload.files
        ]
        geolocation = None
        if payload.geolocation is not None:
            try:
                geolocation = Geolocation(payload.geolocation.latitude, payload.geolocation.longitude)
            except ValueError as err:
                raise StagingError(str(err)) from err

        report = engine.seal(
            payload.narrative_text,
            files,
            geolocation=geolocation,
            generated_at=payload.generated_at,
        )
        return SealResponse(
            manifest=report.manifest.to_dict(),
            signature=report.signature,
            document_base64=base64.b64encode(report.document_bytes).decode("ascii"),
            document_digest=report.document_digest,
            page_count=report.page_count,
            verification_image_embedded=report.verification_image_embedded,
        )

    @app.post("/api/v1/verify")
    def verify(payload: VerifyRequest):
        """Verify a manifest signature and, optionally, a document stamp."""
        public_key_pem = payload.public_key_pem or payload.manifest.get("device_public_key")
        if not isinstance(public_key_pem, str):
            raise VerificationError("No public key supplied and none declared in the manifest")

        signature_valid = verify_manifest(payload.manifest, payload.signature, public_key_pem)

        document_digest_valid = None
        if payload.document_base64 is not None and payload.document_digest is not None:
            document = _decode_base64(payload.document_base64, "document_base64")
            document_digest_valid = verify_stamp(document, payload.document_digest)

        return {
            "valid": signature_valid and document_digest_valid is not False,
            "signature_valid": signature_valid,
            "document_digest_valid": document_digest_valid,
        }

    @app.post("/api/v1/review-request")
    def review_request(payload: ReviewRequest, _auth: bool = Depends(verify_api_key)):
        """Build the online review prompt for a sealed narrative."""
        try:
            manifest = Manifest.from_dict(payload.manifest)
        except (KeyError, ValueError, TypeError) as err:
            raise HTTPException(
                status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Malformed manifest: {err}",
            ) from err
        return {"prompt": build_review_request(payload.narrative_text, manifest)}

    return app
