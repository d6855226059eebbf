# main.py
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from interview_coach.config import get_settings
from interview_coach.routes import analysis, sessions, websocket_routes
from interview_coach.routes.deps import get_session_machine
from interview_coach.utils.logger import setup_logging, get_logger
from interview_coach.utils.redis_client import test_connection

setup_logging()
log = get_logger(__name__)
settings = get_settings()

VERSION = "1.0.0"

app = FastAPI(
    title="Interview Coach API",
    version=VERSION,
    description="Avatar mock interviews: speech capture, turn orchestration and multimodal answer analysis"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sessions.router)
app.include_router(analysis.router)
app.include_router(websocket_routes.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed request fields are a 400, not FastAPI's default 422."""
    missing = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()]
    missing = [m for m in missing if m]
    log.warning(f"Rejected request to {request.url.path}: {missing}")
    return JSONResponse(
        status_code=400,
        content={"detail": f"Missing or invalid fields: {', '.join(missing) or 'body'}"},
    )


@app.on_event("startup")
async def startup_event():
    """Startup tasks"""
    log.info(f"🚀 Starting Interview Coach API v{VERSION}")

    redis_ok = await test_connection()
    if redis_ok:
        log.info("✅ Redis connected")
    else:
        log.warning("⚠️ Redis connection failed")

    services = []
    if settings.llm_api_key:
        services.append("✅ Gemini LLM")
    if settings.groq_api_key:
        services.append("✅ Groq fallback")
    if settings.deepgram_api_key:
        services.append("✅ Deepgram STT")
    services.append("✅ Edge TTS")
    log.info(f"Services: {', '.join(services)}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    log.info("🛑 Shutting down...")
    await get_session_machine().close()
    log.info("✅ Shutdown complete")


@app.get("/")
async def root():
    return {
        "message": f"Interview Coach API v{VERSION}",
        "status": "operational",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check"""
    return {
        "status": "healthy",
        "version": VERSION,
        "services": {
            "gemini": bool(settings.llm_api_key),
            "groq": bool(settings.groq_api_key),
            "deepgram": bool(settings.deepgram_api_key),
            "redis": await test_connection(),
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "interview_coach.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
