"""Main entry point for the AVAS chat relay API."""
import logging
from typing import Iterator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from config import AVAILABLE_MODELS, Settings, configure_logging
from models.api import ChatReply, HealthResponse, ModelsResponse
from services.errors import PayloadTooLargeError, RelayError, UpstreamError
from services.gemini_backend import GenerativeBackend
from services.ndjson import encode_fragment
from services.relay import RelayService

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no"  # Disable buffering in nginx
}


def _next_fragment(fragments: Iterator[str]) -> Optional[str]:
    return next(fragments, None)


def _stream_body(first: Optional[str], fragments: Iterator[str]) -> Iterator[bytes]:
    """Frame fragments as NDJSON. A failure after the first fragment ends the stream."""
    if first is None:
        return
    yield encode_fragment(first)
    try:
        for fragment in fragments:
            yield encode_fragment(fragment)
    except UpstreamError as e:
        logger.error(f"Upstream failed mid-stream, closing connection: {e.detail}")


def create_app(settings: Optional[Settings] = None, backend: Optional[GenerativeBackend] = None) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Process settings (read from the environment when omitted)
        backend: Generative backend override, mainly for tests

    Returns:
        Configured FastAPI app
    """
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="AVAS Chat Relay",
        description="Streaming relay between chat clients and Google Gemini",
        version="1.0.0"
    )
    app.state.settings = settings
    app.state.relay = RelayService(settings, backend)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Health check with backend configuration flags."""
        return HealthResponse(
            ok=True,
            gemini=request.app.state.relay.configured,
            apiKeyConfigured=request.app.state.settings.gemini_configured
        )

    @app.get("/models", response_model=ModelsResponse)
    async def models() -> ModelsResponse:
        """Static list of selectable models."""
        return ModelsResponse(models=list(AVAILABLE_MODELS))

    @app.post("/chat")
    async def chat(request: Request):
        """
        Relay a conversation to Gemini.

        Body: {"messages": [{role, content}, ...], "model"?: str, "stream"?: bool}.
        Streams NDJSON fragments by default; with "stream": false returns
        {"message", "raw"}. Errors are returned as JSON envelopes.
        """
        body = await request.body()
        if len(body) > request.app.state.settings.max_body_bytes:
            raise PayloadTooLargeError()

        try:
            payload = await request.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {}

        relay: RelayService = request.app.state.relay
        model = payload.get("model")
        stream = payload.get("stream")
        stream = True if stream is None else bool(stream)

        if not stream:
            reply = await run_in_threadpool(relay.relay, payload.get("messages"), model, False)
            return ChatReply(message=reply.text, raw=reply.raw)

        fragments = relay.relay(payload.get("messages"), model, True)
        # Pull the first fragment before committing to a 200 so that failures
        # opening the upstream stream still get a 502 envelope
        first = await run_in_threadpool(_next_fragment, fragments)
        return StreamingResponse(
            _stream_body(first, fragments),
            media_type="text/event-stream",
            headers=STREAM_HEADERS
        )

    @app.post("/rag")
    async def rag() -> JSONResponse:
        return JSONResponse(status_code=501, content={"error": "rag_not_implemented"})

    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings)
    logger.info(f"Starting AVAS API on http://{settings.host}:{settings.port}")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
