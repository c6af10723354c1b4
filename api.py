"""FastAPI entrypoint exposing the header analysis as JSON over HTTP."""

import logging
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from header_engine import INTERNAL_ERROR_MESSAGE, build_http, handle_request, load_config
from providers import all_providers
from schemas import Config

log = logging.getLogger(__name__)


def create_app(cfg: Optional[Config] = None, http=None) -> FastAPI:
    if cfg is None:
        load_dotenv()
        cfg = load_config()
    http = http or build_http(cfg)
    app = FastAPI(title="header-enrichment-engine")
    log.info("Enrichment providers: %s", ", ".join(all_providers()))

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/analyze-header")
    async def analyze_header(request: Request) -> JSONResponse:
        try:
            payload: Any = await request.json()
        except ValueError as e:
            return JSONResponse({"error": INTERNAL_ERROR_MESSAGE, "details": str(e)}, status_code=500)
        status, body = await handle_request(payload, cfg, http)
        return JSONResponse(body, status_code=status)

    return app


app = create_app()
