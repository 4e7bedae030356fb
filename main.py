import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import AVAILABLE_MODELS, CORS_ORIGINS, DEFAULT_MODEL
from agents.backend import GeminiBackend
from errors import LessonSynthError
from ingest.sources import read_uploads
from models import (
    ChatRequest,
    ChatTurn,
    GroundingSource,
    LessonResult,
    SessionCreated,
    SessionState,
    SourceMaterial,
)
from session import SessionStore
from utils.log_handler import LOG_FORMAT, session_logger

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Lesson Synthesizer",
    description="Merges web pages, documents, pasted text and web search into a Gemini-generated lesson with grounded follow-up chat",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_sessions = SessionStore(backend_factory=GeminiBackend)


def get_sessions() -> SessionStore:
    return _sessions


@app.exception_handler(LessonSynthError)
async def lesson_synth_error_handler(request: Request, exc: LessonSynthError):
    logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error_code": exc.error_code, "detail": exc.message, "context": exc.context},
    )


@app.get("/")
async def root():
    return {"status": "healthy", "service": "Lesson Synthesizer", "version": "1.0.0"}


@app.get("/models")
async def list_models():
    return {"default": DEFAULT_MODEL, "models": AVAILABLE_MODELS}


@app.post("/sessions", response_model=SessionCreated)
async def create_session(sessions: SessionStore = Depends(get_sessions)):
    session = sessions.create()
    return SessionCreated(session_id=session.session_id)


@app.get("/sessions/{session_id}", response_model=SessionState)
async def get_session(session_id: str, sessions: SessionStore = Depends(get_sessions)):
    return sessions.get(session_id).snapshot()


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str, sessions: SessionStore = Depends(get_sessions)):
    sessions.delete(session_id)
    return {"deleted": session_id}


@app.post("/sessions/{session_id}/learn", response_model=LessonResult)
async def start_learning(
    session_id: str,
    urls: Optional[List[str]] = Form(None),
    pasted_texts: Optional[List[str]] = Form(None),
    search_query: Optional[str] = Form(None),
    focus_topic: Optional[str] = Form(None),
    model: str = Form(DEFAULT_MODEL),
    use_urls: bool = Form(True),
    use_documents: bool = Form(True),
    use_pasted_texts: bool = Form(True),
    use_search: bool = Form(True),
    files: Optional[List[UploadFile]] = File(None),
    sessions: SessionStore = Depends(get_sessions),
):
    """Start a lesson: merge sources -> compile request -> Gemini -> parse + resolve sources."""
    if model not in AVAILABLE_MODELS:
        raise HTTPException(status_code=400, detail=f"Unknown model: {model}")

    session = sessions.get(session_id)
    with session_logger(session_id, "learn"):
        documents = await read_uploads(files)
        material = SourceMaterial(
            urls=urls or [],
            documents=documents,
            pasted_texts=pasted_texts or [],
            search_query=search_query,
            use_urls=use_urls,
            use_documents=use_documents,
            use_pasted_texts=use_pasted_texts,
            use_search=use_search,
        )
        logger.info(
            f"Start learning: {len(material.urls)} url(s), {len(documents)} document(s), "
            f"{len(material.pasted_texts)} pasted text(s), search={bool(search_query)}, model={model}"
        )
        result = await run_in_threadpool(session.start_learning, material, focus_topic, model)
        logger.info(f"Lesson status: {result.status}, {len(result.sections)} sections, {len(result.sources)} sources")
        return result


@app.post("/sessions/{session_id}/retry", response_model=LessonResult)
async def retry_learning(session_id: str, sessions: SessionStore = Depends(get_sessions)):
    session = sessions.get(session_id)
    with session_logger(session_id, "retry"):
        return await run_in_threadpool(session.retry)


@app.post("/sessions/{session_id}/abandon", response_model=SessionState)
async def abandon_request(session_id: str, sessions: SessionStore = Depends(get_sessions)):
    session = sessions.get(session_id)
    session.abandon()
    return session.snapshot()


@app.post("/sessions/{session_id}/attachments", response_model=SessionState)
async def attach_document(
    session_id: str,
    uri: str = Form(...),
    text: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    sessions: SessionStore = Depends(get_sessions),
):
    """Attach one file or one pasted text for a requested document."""
    if (file is None) == (text is None):
        raise HTTPException(status_code=400, detail="Provide exactly one of 'file' or 'text'")

    session = sessions.get(session_id)
    if file is not None:
        documents = await read_uploads([file])
        session.attach_file(uri, documents[0])
    else:
        session.attach_text(uri, text)
    return session.snapshot()


@app.delete("/sessions/{session_id}/attachments", response_model=SessionState)
async def detach_document(session_id: str, uri: str, sessions: SessionStore = Depends(get_sessions)):
    session = sessions.get(session_id)
    session.detach(uri)
    return session.snapshot()


@app.post("/sessions/{session_id}/supplemental", response_model=LessonResult)
async def submit_supplemental(
    session_id: str,
    files: Optional[List[UploadFile]] = File(None),
    sessions: SessionStore = Depends(get_sessions),
):
    """Add bulk documents (if any) to the attachments and re-run the lesson request."""
    session = sessions.get(session_id)
    with session_logger(session_id, "supplemental"):
        bulk = await read_uploads(files)
        result = await run_in_threadpool(session.submit_supplemental_content, None, bulk)
        logger.info(f"Resubmission status: {result.status}")
        return result


@app.post("/sessions/{session_id}/chat", response_model=ChatTurn)
async def send_follow_up(session_id: str, request: ChatRequest, sessions: SessionStore = Depends(get_sessions)):
    session = sessions.get(session_id)
    with session_logger(session_id, "chat"):
        return await run_in_threadpool(
            session.send_follow_up,
            request.section_index,
            request.qa_index,
            request.message,
            request.use_search,
        )


@app.get("/sessions/{session_id}/chat/{section_index}/{qa_index}", response_model=List[ChatTurn])
async def chat_history(session_id: str, section_index: int, qa_index: int, sessions: SessionStore = Depends(get_sessions)):
    return sessions.get(session_id).history(section_index, qa_index)


@app.get("/sessions/{session_id}/bibliography", response_model=List[GroundingSource])
async def bibliography(session_id: str, sessions: SessionStore = Depends(get_sessions)):
    return sessions.get(session_id).bibliography()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
