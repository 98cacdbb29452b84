"""FastAPI backend for the scope builder"""
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from fastapi import Body, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from .config import settings
from .database import (
    clear_snapshot,
    init_database,
    load_snapshot,
    new_session_id,
    purge_expired,
    save_snapshot,
)
from .email_service import LoggingEmailTransport, send_email
from .engine import ScopeEngine
from .errors import ErrorCode, NotFoundError, ScopeBuilderError
from .extraction import analyze_agreement, extract_scope
from .logging_config import configure_logging
from .models import (
    DeductibleUpdate,
    DetailsUpdate,
    EmailRequest,
    NotesUpdate,
    ScopeState,
    ShareRequest,
    SupplementUpdate,
)
from .partners import PartnerRegistry, load_registry
from .pdf_parser import IngestedDocument, ingest
from .summary import build_email_request, partner_previews, render_html, render_text

configure_logging(settings.log_level, settings.log_json)
logger = structlog.get_logger(__name__)

app = FastAPI(title="Scope Builder", version="0.1.0")

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

db_conn = None
partner_registry: Optional[PartnerRegistry] = None
email_transport = LoggingEmailTransport()


@app.on_event("startup")
async def startup_event():
    """Initialize database and partner directory on startup"""
    global db_conn, partner_registry
    db_conn = init_database()
    purge_expired(db_conn)
    partner_registry = load_registry(settings.partner_directory_path)
    logger.info("startup_complete", db_path=settings.db_path, partners=len(partner_registry))


@app.on_event("shutdown")
async def shutdown_event():
    """Close database connection on shutdown"""
    global db_conn
    if db_conn:
        db_conn.close()
        db_conn = None


@app.exception_handler(ScopeBuilderError)
async def scope_builder_error_handler(request: Request, exc: ScopeBuilderError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _registry() -> PartnerRegistry:
    global partner_registry
    if partner_registry is None:
        partner_registry = load_registry(settings.partner_directory_path)
    return partner_registry


def _load_state(session_id: str) -> ScopeState:
    state = load_snapshot(db_conn, session_id)
    if state is None:
        raise NotFoundError(
            ErrorCode.SESSION_NOT_FOUND,
            f"Session not found: {session_id}",
            session_id=session_id,
        )
    return state


def _mutate(session_id: str, operation: Callable[[ScopeEngine], Any]) -> Tuple[ScopeEngine, Any]:
    """Apply one engine operation and snapshot the result.

    A failing operation raises before the save, so the stored snapshot is untouched.
    """
    engine = ScopeEngine(_load_state(session_id))
    result = operation(engine)
    save_snapshot(db_conn, session_id, engine.state)
    return engine, result


def _session_view(session_id: str, engine: ScopeEngine) -> Dict[str, Any]:
    return {
        "sessionId": session_id,
        "state": engine.state.to_wire(),
        "totals": engine.compute_totals().to_wire(),
        "selection": {trade.id: trade.selection.value for trade in engine.state.trades},
    }


async def _ingest_upload(file: Optional[UploadFile], text: Optional[str]) -> IngestedDocument:
    file_bytes = await file.read() if file is not None else None
    return ingest(
        file_bytes=file_bytes,
        filename=file.filename if file is not None else None,
        text=text,
        content_type=file.content_type if file is not None else None,
        max_bytes=settings.max_upload_bytes,
    )


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    status = {
        "status": "ok",
        "ollama_available": False,
        "gemini_available": bool(settings.gemini_api_key),
    }

    # Check Ollama availability
    try:
        import ollama
        models = ollama.list()
        status["ollama_available"] = any(
            settings.ollama_model in (model.get("name") or model.get("model") or "")
            for model in models.get("models", [])
        )
    except Exception as e:
        logger.debug("ollama_unavailable", error=str(e))

    return status


@app.post("/api/parse-scope")
async def parse_scope_endpoint(
    file: Optional[UploadFile] = File(None),
    text: Optional[str] = Form(None)
):
    """Extract trades from an insurance document without touching any session"""
    document = await _ingest_upload(file, text)
    result = await extract_scope(document)
    return {**result["data"], "confidence": result["confidence"], "provider": result["provider"]}


@app.post("/api/analyze")
async def analyze_endpoint(
    file: Optional[UploadFile] = File(None),
    text: Optional[str] = Form(None)
):
    """Summarize a signed construction agreement as a job summary"""
    document = await _ingest_upload(file, text)
    return await analyze_agreement(document)


@app.post("/api/sessions")
async def create_session_endpoint():
    """Start an empty claim session"""
    session_id = new_session_id()
    engine = ScopeEngine()
    save_snapshot(db_conn, session_id, engine.state)
    logger.info("session_created", session_id=session_id)
    return _session_view(session_id, engine)


@app.get("/api/sessions/{session_id}")
async def get_session_endpoint(session_id: str):
    return _session_view(session_id, ScopeEngine(_load_state(session_id)))


@app.delete("/api/sessions/{session_id}")
async def clear_session_endpoint(session_id: str):
    """Start over: remove the snapshot entirely"""
    if not clear_snapshot(db_conn, session_id):
        raise NotFoundError(ErrorCode.SESSION_NOT_FOUND, f"Session not found: {session_id}", session_id=session_id)
    logger.info("session_cleared", session_id=session_id)
    return {"sessionId": session_id, "cleared": True}


@app.post("/api/sessions/{session_id}/scope")
async def extract_into_session_endpoint(
    session_id: str,
    file: Optional[UploadFile] = File(None),
    text: Optional[str] = Form(None)
):
    """Extract trades from a document and load them into the session"""
    _load_state(session_id)
    document = await _ingest_upload(file, text)
    result = await extract_scope(document)
    engine, _ = _mutate(session_id, lambda e: e.load_from_extraction(result["data"]))
    return {
        **_session_view(session_id, engine),
        "confidence": result["confidence"],
        "provider": result["provider"],
    }


@app.put("/api/sessions/{session_id}/trades")
async def load_trades_endpoint(session_id: str, payload: Any = Body(...)):
    """Replace the session's trades with an already-extracted payload"""
    engine, _ = _mutate(session_id, lambda e: e.load_from_extraction(payload))
    return _session_view(session_id, engine)


@app.post("/api/sessions/{session_id}/trades/{trade_id}/toggle")
async def toggle_trade_endpoint(session_id: str, trade_id: str):
    engine, _ = _mutate(session_id, lambda e: e.toggle_trade(trade_id))
    return _session_view(session_id, engine)


@app.post("/api/sessions/{session_id}/trades/{trade_id}/items/{item_id}/toggle")
async def toggle_line_item_endpoint(session_id: str, trade_id: str, item_id: str):
    engine, _ = _mutate(session_id, lambda e: e.toggle_line_item(trade_id, item_id))
    return _session_view(session_id, engine)


@app.put("/api/sessions/{session_id}/trades/{trade_id}/items/{item_id}/notes")
async def update_notes_endpoint(session_id: str, trade_id: str, item_id: str, body: NotesUpdate):
    engine, _ = _mutate(session_id, lambda e: e.update_notes(trade_id, item_id, body.notes))
    return _session_view(session_id, engine)


@app.post("/api/sessions/{session_id}/trades/{trade_id}/supplements")
async def add_supplement_endpoint(session_id: str, trade_id: str):
    engine, supp = _mutate(session_id, lambda e: e.add_supplement(trade_id))
    return {**_session_view(session_id, engine), "supplement": supp.to_wire()}


@app.patch("/api/sessions/{session_id}/trades/{trade_id}/supplements/{supp_id}")
async def update_supplement_endpoint(session_id: str, trade_id: str, supp_id: str, body: SupplementUpdate):
    engine, _ = _mutate(
        session_id,
        lambda e: e.update_supplement(trade_id, supp_id, body.field, body.value)
    )
    return _session_view(session_id, engine)


@app.delete("/api/sessions/{session_id}/trades/{trade_id}/supplements/{supp_id}")
async def remove_supplement_endpoint(session_id: str, trade_id: str, supp_id: str):
    engine, _ = _mutate(session_id, lambda e: e.remove_supplement(trade_id, supp_id))
    return _session_view(session_id, engine)


@app.put("/api/sessions/{session_id}/deductible")
async def set_deductible_endpoint(session_id: str, body: DeductibleUpdate):
    engine, _ = _mutate(session_id, lambda e: e.set_deductible(body.amount))
    return _session_view(session_id, engine)


@app.put("/api/sessions/{session_id}/details")
async def update_details_endpoint(session_id: str, body: DetailsUpdate):
    """Finalize step: signature, claim number, adjuster and work-not-doing note"""
    engine, _ = _mutate(
        session_id,
        lambda e: e.update_details(
            signature=body.signature,
            claim_number=body.claim_number,
            claim_adjuster=body.claim_adjuster,
            work_not_doing=body.work_not_doing,
        )
    )
    return _session_view(session_id, engine)


@app.get("/api/sessions/{session_id}/totals")
async def totals_endpoint(session_id: str):
    return ScopeEngine(_load_state(session_id)).compute_totals().to_wire()


@app.get("/api/sessions/{session_id}/partners")
async def partners_endpoint(session_id: str):
    """Trade partners who can pick up the work not being done"""
    state = _load_state(session_id)
    return {"partners": partner_previews(_registry(), state)}


@app.post("/api/sessions/{session_id}/partners/share")
async def share_with_partners_endpoint(session_id: str, body: ShareRequest):
    state = _load_state(session_id)
    sharing = _registry().share_with_partners(body.partner_ids, state)
    return {"success": True, "shared": sharing}


@app.get("/api/sessions/{session_id}/summary", response_class=HTMLResponse)
async def summary_html_endpoint(session_id: str):
    return HTMLResponse(render_html(_load_state(session_id)))


@app.get("/api/sessions/{session_id}/summary.txt", response_class=PlainTextResponse)
async def summary_text_endpoint(session_id: str):
    return PlainTextResponse(render_text(_load_state(session_id)))


@app.post("/api/sessions/{session_id}/email")
async def email_summary_endpoint(session_id: str):
    """Send the summary to the homeowner and claim adjuster"""
    request = build_email_request(_load_state(session_id))
    result = await send_email(request, email_transport)
    return {**result, "to": request.to}


@app.post("/api/send-email")
async def send_email_endpoint(body: EmailRequest):
    return await send_email(body, email_transport)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
