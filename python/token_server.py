"""
Realtime Credential Service

Mints short-lived realtime credentials for the interview client so the
long-lived API key never leaves the server.

Endpoints:
    GET /token   - Create a realtime session upstream, return its JSON verbatim
                   (the client reads client_secret.value)
    GET /health  - Health check

Internal binding: configured by TOKEN_SERVER_HOST/TOKEN_SERVER_PORT
(default 127.0.0.1:3000)
"""

from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Mapping

import httpx
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mock_interviewer.config import DEFAULT_REALTIME_MODEL
from mock_interviewer.models import format_utc_timestamp

# =============================================================================
# Logging Configuration
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_SESSIONS_URL = "https://api.openai.com/v1/realtime/sessions"
SERVICE_NAME = "Realtime Credential Service"
SERVICE_VERSION = "1.0.0"


@dataclass(frozen=True)
class TokenServerConfig:
    """Runtime config for the credential service."""

    api_key: str
    model: str = DEFAULT_REALTIME_MODEL
    voice: str = "verse"
    sessions_url: str = DEFAULT_SESSIONS_URL
    host: str = "127.0.0.1"
    port: int = 3000
    timeout_seconds: float = 10.0


def load_token_server_config(env: Mapping[str, str] | None = None) -> TokenServerConfig:
    """Load token server config from environment with strict validation."""
    if env is None:
        load_dotenv(Path(__file__).parent / ".env")
        env = os.environ

    api_key = (env.get("OPENAI_API_KEY") or "").strip()
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is not set")

    model = (env.get("REALTIME_MODEL", DEFAULT_REALTIME_MODEL) or "").strip()
    if not model:
        raise RuntimeError("REALTIME_MODEL resolved to empty value.")

    voice = (env.get("REALTIME_VOICE", "verse") or "").strip()
    if not voice:
        raise RuntimeError("REALTIME_VOICE resolved to empty value.")

    sessions_url = (env.get("REALTIME_SESSIONS_URL", DEFAULT_SESSIONS_URL) or "").strip()
    if not sessions_url.startswith("https://"):
        raise RuntimeError(f"REALTIME_SESSIONS_URL must be an https URL. Got: {sessions_url}")

    host = (env.get("TOKEN_SERVER_HOST", "127.0.0.1") or "").strip()
    if not host:
        raise RuntimeError("TOKEN_SERVER_HOST resolved to empty value.")

    port_raw = (env.get("TOKEN_SERVER_PORT", "3000") or "").strip()
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise RuntimeError(f"TOKEN_SERVER_PORT must be an integer. Got: {port_raw}") from exc
    if port < 1 or port > 65535:
        raise RuntimeError(f"TOKEN_SERVER_PORT must be in range 1-65535. Got: {port}.")

    return TokenServerConfig(
        api_key=api_key,
        model=model,
        voice=voice,
        sessions_url=sessions_url,
        host=host,
        port=port,
    )


# =============================================================================
# Response Models
# =============================================================================


class ErrorResponse(BaseModel):
    """Error response body."""

    ok: bool = Field(default=False, description="Always false for errors")
    error: str = Field(..., description="Human-readable error message")
    error_code: str | None = Field(default=None, description="Machine-readable error code")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: str = Field(..., description="Current server timestamp")
    model: str = Field(..., description="Realtime model credentials are minted for")


# =============================================================================
# Custom Exceptions
# =============================================================================


class TokenServiceError(Exception):
    """Base exception for credential service errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class UpstreamSessionError(TokenServiceError):
    """Raised when the upstream realtime sessions endpoint fails."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="UPSTREAM_SESSION_FAILED",
        )


async def token_service_error_handler(request: Request, exc: TokenServiceError) -> JSONResponse:
    """Render TokenServiceError as an ErrorResponse."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message, error_code=exc.error_code).model_dump(),
    )


# =============================================================================
# Upstream
# =============================================================================


async def create_realtime_session(
    client: httpx.AsyncClient,
    config: TokenServerConfig,
) -> dict[str, Any]:
    """
    Create a realtime session upstream and return its JSON.

    Raises:
        UpstreamSessionError: On transport failure, non-2xx, or a body
            without client_secret.value.
    """
    try:
        response = await client.post(
            config.sessions_url,
            headers={"Authorization": f"Bearer {config.api_key}"},
            json={"model": config.model, "voice": config.voice},
        )
    except httpx.HTTPError as exc:
        logger.error("Realtime session request failed: %s", exc)
        raise UpstreamSessionError(f"Realtime session request failed: {exc}") from exc

    if response.status_code >= 400:
        logger.error(
            "Realtime session request rejected: HTTP %d: %s",
            response.status_code,
            response.text[:160],
        )
        raise UpstreamSessionError(f"Realtime session request rejected: HTTP {response.status_code}")

    try:
        data = response.json()
        secret = data["client_secret"]["value"]
    except (ValueError, KeyError, TypeError) as exc:
        raise UpstreamSessionError("Realtime session response lacks client_secret.value") from exc
    if not secret:
        raise UpstreamSessionError("Realtime session response has an empty client_secret.value")

    logger.info("Minted realtime credential (model=%s)", config.model)
    return data


# =============================================================================
# FastAPI Application
# =============================================================================


def create_app(
    config: TokenServerConfig,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Create the credential service application.

    Args:
        config: Validated service configuration.
        http_transport: Optional httpx transport for upstream calls.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[dict[str, Any]]:
        logger.info("Starting %s (model=%s)", SERVICE_NAME, config.model)
        async with httpx.AsyncClient(
            timeout=config.timeout_seconds,
            transport=http_transport,
        ) as client:
            yield {"http_client": client, "config": config}
        logger.info("Shutting down...")

    app = FastAPI(
        title=SERVICE_NAME,
        version=SERVICE_VERSION,
        description="Mints short-lived realtime credentials for the mock interviewer",
        lifespan=lifespan,
    )
    app.add_exception_handler(TokenServiceError, token_service_error_handler)

    @app.get("/token")
    async def token(request: Request) -> JSONResponse:
        """Create an upstream realtime session and return it verbatim."""
        data = await create_realtime_session(request.state.http_client, request.state.config)
        return JSONResponse(content=data)

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            service=SERVICE_NAME,
            version=SERVICE_VERSION,
            timestamp=format_utc_timestamp(),
            model=request.state.config.model,
        )

    return app


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the realtime credential service for the mock interviewer.",
    )
    parser.add_argument("--host", default=None, help="Bind host (default: TOKEN_SERVER_HOST).")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: TOKEN_SERVER_PORT).")
    parser.add_argument("--log-level", default="info", help="Uvicorn log level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_token_server_config()
    host = args.host or config.host
    port = args.port or config.port

    logger.info("Serving %s on http://%s:%d/token", SERVICE_NAME, host, port)
    uvicorn.run(create_app(config), host=host, port=port, log_level=args.log_level)


if __name__ == "__main__":
    main()
