import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pagepilot.backend import ActionBackend, build_default_backend
from pagepilot.config import configure_logging
from pagepilot.errors import ActionValidationError, PilotError

configure_logging()
logger = logging.getLogger("pagepilot")

GENERIC_ANSWER = PilotError.answer

# what each route answers with when it fails, so the widget can always read the same keys
EMPTY_RESPONSES: Dict[str, Dict[str, Any]] = {
    "navigation": {"actionType": "navigate", "url": "", "responseId": ""},
    "click": {"actionType": "click", "buttonText": "", "buttonId": "", "responseId": ""},
    "highlight": {"actionType": "highlight", "words": "", "responseId": ""},
    "fillForm": {"actionType": "fillForm", "formFills": [], "missingFields": [], "responseId": ""},
    "research-analyze": {"foundAnswer": False, "confidence": "low", "responseId": ""},
    "research-organize": {"organizedLinks": [], "responseId": ""},
    "helpful": {"success": False},
}


def _error_body(intent: str, answer: str, error: str) -> Dict[str, Any]:
    return {"answer": answer, **EMPTY_RESPONSES.get(intent, {}), "error": error}


async def _read_json_object(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ActionValidationError("body", f"Invalid JSON body: {e}") from e
    if not isinstance(body, dict):
        raise ActionValidationError("body", "Request body must be a JSON object")
    return body


def create_app(backend: Optional[ActionBackend] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.backend is None:
            app.state.backend = build_default_backend()
        yield

    app = FastAPI(title="pagepilot", lifespan=lifespan)
    app.state.backend = backend

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # widget is served from any origin
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def run_intent(intent: str, request: Request) -> JSONResponse:
        try:
            body = await _read_json_object(request)
            result = await request.app.state.backend.handle(intent, body)
            return JSONResponse(result)
        except PilotError as e:
            return JSONResponse(_error_body(intent, e.answer, e.message), status_code=e.status_code)
        except Exception as e:
            logger.exception(f"Unhandled error in {intent}: {e}")
            return JSONResponse(_error_body(intent, GENERIC_ANSWER, "Internal server error"), status_code=500)

    @app.post("/api/beta/action/navigation")
    async def navigation(request: Request):
        return await run_intent("navigation", request)

    @app.post("/api/beta/action/click")
    async def click(request: Request):
        return await run_intent("click", request)

    @app.post("/api/beta/action/highlight")
    async def highlight(request: Request):
        return await run_intent("highlight", request)

    @app.post("/api/beta/action/fillForm")
    async def fill_form(request: Request):
        return await run_intent("fillForm", request)

    @app.post("/api/beta/research/analyze")
    async def research_analyze(request: Request):
        return await run_intent("research-analyze", request)

    @app.post("/api/beta/research/organize")
    async def research_organize(request: Request):
        return await run_intent("research-organize", request)

    @app.post("/api/beta/helpful")
    async def helpful(request: Request):
        try:
            body = await _read_json_object(request)
            backend: ActionBackend = request.app.state.backend
            result = await asyncio.to_thread(backend.record_feedback, body.get("conversationId"), body.get("helpful"))
            return JSONResponse(result)
        except PilotError as e:
            return JSONResponse(_error_body("helpful", e.answer, e.message), status_code=e.status_code)
        except Exception as e:
            logger.exception(f"Unhandled error in helpful: {e}")
            return JSONResponse(_error_body("helpful", GENERIC_ANSWER, "Internal server error"), status_code=500)

    @app.get("/health")
    async def health(request: Request):
        return request.app.state.backend.health()

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
