"""Orchestrator - FastAPI Application.

Thin HTTP front end over the orchestrator:
- API key check on the prompt endpoint
- Prompt endpoint returning the accumulated answer
- Health endpoint
- Generic error responses; details stay in the log
"""

import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from orchestrator.gateway import Orchestrator

logger = get_logger(__name__)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


# Request/Response Models
class PromptRequest(BaseModel):
    """Prompt request from a client."""
    message: str = Field(..., description="User query")


class PromptResponse(BaseModel):
    """Answer produced for a prompt."""
    response: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    providers: list[str]
    tool_count: int


class UnauthorizedError(Exception):
    """Missing or invalid API key."""
    pass


def get_orchestrator(request: Request) -> Orchestrator:
    """Dependency returning the orchestrator owned by the app."""
    return request.app.state.orchestrator


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> None:
    """Dependency rejecting requests without the configured API key."""
    expected = request.app.state.settings.orchestrator.api_key
    if expected is None:
        return
    if not api_key or not secrets.compare_digest(api_key, expected):
        raise UnauthorizedError()


def create_app(
    orchestrator: Optional[Orchestrator] = None,
    settings: Optional[Settings] = None
) -> FastAPI:
    """
    Create the HTTP application.

    Args:
        orchestrator: Orchestrator to serve; built from settings if omitted
        settings: Application settings; loaded from the environment if omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start providers before serving; close them on shutdown."""
        if app.state.orchestrator is None:
            app.state.orchestrator = Orchestrator.from_settings(settings)

        if settings.orchestrator.api_key is None:
            logger.warning("No API key configured; prompt endpoint is unauthenticated")

        # Fail-fast: a provider that cannot start aborts startup
        await app.state.orchestrator.connect_to_servers()
        logger.info("Orchestrator HTTP server started")

        yield

        logger.info("Shutting down Orchestrator HTTP server")
        await app.state.orchestrator.cleanup()

    app = FastAPI(
        title="MCP Tool Orchestrator",
        description="Chat model orchestration over MCP tool providers",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized", "message": "Valid API key required"}
        )

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)):
        """Health check endpoint."""
        return HealthResponse(**orchestrator.health())

    @app.post(
        "/api/prompt",
        response_model=PromptResponse,
        dependencies=[Depends(verify_api_key)],
        tags=["Prompt"]
    )
    async def prompt(
        request: PromptRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator)
    ):
        """Answer a prompt using the model and the provider tools."""
        try:
            answer = await orchestrator.prompt(request.message)
        except Exception as e:
            logger.error("Prompt processing failed", error=str(e), exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal Server Error", "message": "Something went wrong"}
            )

        return PromptResponse(response=answer)

    return app


def main():
    """Run the Orchestrator server."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.environment == "production")

    uvicorn.run(
        create_app(settings=settings),
        host=settings.orchestrator.host,
        port=settings.orchestrator.port
    )


if __name__ == "__main__":
    main()
