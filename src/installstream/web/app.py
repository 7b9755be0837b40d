"""FastAPI log relay for installation streams."""

from fastapi import FastAPI, Request

from .relay import LogRelay
from .routes import stream
from ..core.config import RelayConfig, load_defaults


def create_app(config: RelayConfig | None = None) -> FastAPI:
    app = FastAPI(title="installstream relay", docs_url=None, redoc_url=None)
    app.state.relay = LogRelay()
    app.state.relay_config = config or RelayConfig.from_dict(load_defaults())

    app.include_router(stream.router)

    @app.get("/status")
    async def status(request: Request):
        """Health check with the number of known streams."""
        return {"status": "ok", "streams": request.app.state.relay.stream_count()}

    return app
