"""
FastAPI Main module for Code Fixer
Contains FastAPI endpoints for code fixing, README generation and README review
"""

import os
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote
from dotenv import load_dotenv, find_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import Field

# Import from our modules
from .models import SessionState, FileRegistryError, MAX_FILES
from .schemas import (
    WireModel, ActionResult, FileInput, ImprovementFlags,
    CorrectionRequest, CorrectionResult, ReadmeRequest, ReadmeResult,
    ExplainErrorInput, ExplainErrorResult
)
from .functions import (
    fix_code_action, generate_readme_action, explain_error_action, review_readme_action,
    build_correction_request, resolve_corrections, merge_corrected_files,
    fixed_file_name, begin_action, end_action
)
from .simple_database import (
    init_session_table, save_session_state, load_session_state, delete_session_state
)


_ = load_dotenv(find_dotenv())
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
MAX_CACHED_SESSIONS = int(os.getenv("MAX_CACHED_SESSIONS", "500"))


if not GEMINI_API_KEY:
    raise ValueError("GEMINI_API_KEY environment variable is required")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_session_table()
    yield


app = FastAPI(
    title="Code Fixer",
    description="AI-assisted code fixing and README generation API",
    version="1.0.0",
    lifespan=lifespan
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


ERROR_STATUS = {
    "validation": 400,
    "no_result": 422,
    "unexpected": 500,
}


class UploadFilesRequest(WireModel):
    files: List[FileInput] = Field(default_factory=list)


class SessionFixRequest(ImprovementFlags):
    error_message: str = Field("", alias="errorMessage")


class CorrectedFileLookup(WireModel):
    name: str
    corrected_code: Optional[str] = Field(None, alias="correctedCode")
    changed: bool


# -------------------
# Session cache
# -------------------
sessions: "OrderedDict[str, SessionState]" = OrderedDict()


def cache_session(state: SessionState):
    """Keep a session in memory, evicting the least recently used past MAX_CACHED_SESSIONS"""
    sessions[state.session_id] = state
    sessions.move_to_end(state.session_id)
    while len(sessions) > MAX_CACHED_SESSIONS:
        evicted, _ = sessions.popitem(last=False)
        print(f"♻️ Evicted session {evicted} from memory")


def get_session(session_id: str) -> SessionState:
    """Session from memory, falling back to the persisted copy"""
    state = sessions.get(session_id)
    if state is not None:
        sessions.move_to_end(session_id)
        return state
    stored = load_session_state(session_id)
    if not stored:
        raise HTTPException(status_code=404, detail="Session not found")
    try:
        state = SessionState.from_dict(stored)
    except Exception as e:
        print(f"⚠️ Discarding unreadable stored session {session_id}: {e}")
        raise HTTPException(status_code=404, detail="Session not found")
    cache_session(state)
    return state


def persist_session(state: SessionState):
    if not save_session_state(state.session_id, state.to_dict()):
        print(f"⚠️ Session {state.session_id} kept in memory only")


def raise_for_action(result: ActionResult):
    if result.error is not None:
        raise HTTPException(status_code=ERROR_STATUS.get(result.error_kind, 500), detail=result.error)


def files_snapshot(state: SessionState):
    return tuple((f.name, f.content) for f in state.files.to_list())


def attachment_headers(file_name: str):
    """Content-Disposition with an ASCII fallback and the RFC 5987 UTF-8 name"""
    fallback = file_name.encode("ascii", "ignore").decode("ascii").replace('"', "").replace("\\", "")
    return {
        "Content-Disposition": f"attachment; filename=\"{fallback or 'download'}\"; filename*=UTF-8''{quote(file_name, safe='')}"
    }


def session_summary(state: SessionState):
    summary = state.get_context_summary()
    summary["correction"] = state.correction_result.model_dump(by_alias=True) if state.correction_result else None
    summary["readme"] = state.readme
    return summary


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Surface the first field-level violation as a plain message"""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid input.") if errors else "Invalid input."
    return JSONResponse(status_code=422, content={"detail": message})


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Code Fixer API",
        "version": "1.0.0",
        "endpoints": {
            "fix_code": "/api/v1/fix_code - Suggest corrected files for an error",
            "generate_readme": "/api/v1/generate_readme - Generate a README for a set of files",
            "explain_error": "/api/v1/explain_error - Explain an error in a single snippet",
            "readme_review": "/api/v1/readme/review - Read the existing README.md",
            "sessions": "/api/v1/sessions - Session-based upload, fix and download"
        }
    }


@app.get("/api/v1/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


# -------------------
# Stateless actions
# -------------------

@app.post("/api/v1/fix_code", response_model=CorrectionResult)
async def fix_code_endpoint(request: CorrectionRequest):
    """Suggest corrected files and an explanation for an error"""
    result = await fix_code_action(request)
    raise_for_action(result)
    return result.data


@app.post("/api/v1/generate_readme", response_model=ReadmeResult)
async def generate_readme_endpoint(request: ReadmeRequest):
    result = await generate_readme_action(request.files)
    raise_for_action(result)
    return result.data


@app.post("/api/v1/explain_error", response_model=ExplainErrorResult)
async def explain_error_endpoint(request: ExplainErrorInput):
    """Explain an error in the context of a single piece of code"""
    result = await explain_error_action(request.code, request.error_message)
    raise_for_action(result)
    return result.data


@app.get("/api/v1/readme/review")
async def review_readme_endpoint():
    """Read the existing README.md; a missing file is reported, not raised"""
    result = review_readme_action()
    if result.error:
        return {"readme": None, "error": result.error}
    return {"readme": result.data, "error": None}


# -------------------
# Sessions
# -------------------

@app.post("/api/v1/sessions")
async def create_session():
    state = SessionState()
    cache_session(state)
    persist_session(state)
    print(f"✅ Created session {state.session_id}")
    return {"session_id": state.session_id, "max_files": MAX_FILES}


@app.get("/api/v1/sessions/{session_id}")
async def get_session_endpoint(session_id: str):
    return session_summary(get_session(session_id))


@app.delete("/api/v1/sessions/{session_id}")
async def delete_session_endpoint(session_id: str):
    removed = sessions.pop(session_id, None) is not None
    removed = delete_session_state(session_id) or removed
    if not removed:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted", "session_id": session_id}


@app.post("/api/v1/sessions/{session_id}/files")
async def upload_files(session_id: str, request: UploadFilesRequest):
    """Add files to the session registry; the batch is accepted in full or not at all"""
    state = get_session(session_id)
    if not request.files:
        raise HTTPException(status_code=400, detail="At least one file is required.")
    try:
        added = state.files.add_files(request.files)
    except FileRegistryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    state.reset_results()
    persist_session(state)
    print(f"📁 Session {session_id}: {len(state.files)} file(s) after upload")
    return {
        "added": [{"name": f.name, "language": f.language} for f in added],
        "files": state.files.names()
    }


@app.delete("/api/v1/sessions/{session_id}/files/{file_name}")
async def remove_file(session_id: str, file_name: str):
    state = get_session(session_id)
    if not state.files.remove_file(file_name):
        raise HTTPException(status_code=404, detail=f"File not found: {file_name}")
    state.reset_results()
    persist_session(state)
    return {"removed": file_name, "files": state.files.names()}


@app.post("/api/v1/sessions/{session_id}/fix", response_model=CorrectionResult)
async def fix_session_code(session_id: str, request: SessionFixRequest):
    """Run a correction over every file in the session"""
    state = get_session(session_id)
    if not begin_action(session_id, "fix"):
        raise HTTPException(status_code=409, detail="A fix request is already in progress.")
    try:
        state.error_message = request.error_message
        state.flags = ImprovementFlags(
            fix_error=request.fix_error,
            improve_error_handling=request.improve_error_handling,
            add_debugging=request.add_debugging,
            enhance_user_messages=request.enhance_user_messages,
        )
        snapshot = files_snapshot(state)
        correction_request = build_correction_request(state.files, state.error_message, state.flags)
        result = await fix_code_action(correction_request)
    finally:
        end_action(session_id, "fix")

    if files_snapshot(state) != snapshot:
        print(f"⚠️ Session {session_id}: files changed during the fix, discarding result")
        persist_session(state)
        raise HTTPException(status_code=409, detail="Files changed while the fix was running. Please try again.")

    if result.error is None:
        state.correction_result = result.data
        state.readme = None
    persist_session(state)
    raise_for_action(result)
    return result.data


@app.get("/api/v1/sessions/{session_id}/files/{file_name}/corrected", response_model=CorrectedFileLookup)
async def get_corrected_file(session_id: str, file_name: str):
    """Corrected version of one file, or null when no change was suggested"""
    state = get_session(session_id)
    if file_name not in state.files:
        raise HTTPException(status_code=404, detail=f"File not found: {file_name}")
    corrected = state.correction_result.corrected_files if state.correction_result else []
    code = resolve_corrections(state.files.to_list(), corrected)(file_name)
    return CorrectedFileLookup(name=file_name, corrected_code=code, changed=code is not None)


@app.get("/api/v1/sessions/{session_id}/files/{file_name}/download")
async def download_corrected_file(session_id: str, file_name: str):
    state = get_session(session_id)
    corrected = state.correction_result.corrected_files if state.correction_result else []
    code = resolve_corrections(state.files.to_list(), corrected)(file_name)
    if code is None:
        raise HTTPException(status_code=404, detail=f"No corrected version of {file_name}")
    return Response(
        content=code,
        media_type="text/plain",
        headers=attachment_headers(fixed_file_name(file_name))
    )


@app.post("/api/v1/sessions/{session_id}/readme", response_model=ReadmeResult)
async def generate_session_readme(session_id: str):
    """Generate a README from the session files, preferring corrected content"""
    state = get_session(session_id)
    if not begin_action(session_id, "readme"):
        raise HTTPException(status_code=409, detail="A readme request is already in progress.")
    try:
        snapshot = files_snapshot(state)
        correction_used = state.correction_result
        corrected = state.correction_result.corrected_files if state.correction_result else []
        files = merge_corrected_files(state.files.to_list(), corrected)
        result = await generate_readme_action(files)
    finally:
        end_action(session_id, "readme")

    if files_snapshot(state) != snapshot or state.correction_result is not correction_used:
        print(f"⚠️ Session {session_id}: files changed during README generation, discarding result")
        raise HTTPException(status_code=409, detail="Files changed while the README was being generated. Please try again.")

    if result.error is None:
        state.readme = result.data.readme
        persist_session(state)
    raise_for_action(result)
    return result.data


@app.get("/api/v1/sessions/{session_id}/readme/download")
async def download_session_readme(session_id: str):
    state = get_session(session_id)
    if not state.readme:
        raise HTTPException(status_code=404, detail="No README has been generated yet")
    return Response(
        content=state.readme,
        media_type="text/markdown",
        headers=attachment_headers("README.md")
    )
