import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, services
from .cleanup import purge_idle_sessions
from .errors import TutorError
from .settings import settings
from .routers import health, chat, tts

logger = logging.getLogger(__name__)

app = FastAPI(title="Polyglot Pal API", version=__version__)
app.include_router(health.router)
app.include_router(chat.router)
app.include_router(tts.router)

# Allow all origins
app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_methods=["GET", "POST", "OPTIONS"],
	allow_headers=["*"],
)


@app.exception_handler(TutorError)
async def tutor_error_handler(request: Request, exc: TutorError):
	# Vendor detail stays in the log; the client gets the safe summary
	if exc.status_code >= 500:
		logger.error("%s %s failed: %s", request.method, request.url.path, exc)
	return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
	return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
	first = exc.errors()[0] if exc.errors() else {}
	field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "body"
	return JSONResponse(status_code=400, content={"error": f"{field}: {first.get('msg', 'invalid request')}"})


@app.get("/info")
def info():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"tts_provider": settings.tts_provider,
		"session_backend": settings.session_backend,
	}


async def _cleanup_watcher():
	while True:
		await asyncio.sleep(settings.session_sweep_seconds)
		try:
			purge_idle_sessions(services.get_store(), settings.session_idle_ttl_seconds, services.get_locks())
		except Exception:
			logger.exception("Idle session sweep failed")


async def _check_connectivity():
	if not settings.gemini_api_key:
		logger.error("GEMINI_API_KEY is missing; chat requests will fail")
		return
	logger.info("Checking connectivity to Google Gemini...")
	await services.get_generator().ping()


@app.on_event("startup")
async def startup_event():
	logging.basicConfig(
		level=getattr(logging, settings.log_level.upper(), logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s %(message)s",
	)
	# Build the store up front so a bad SESSION_BACKEND fails at boot
	services.get_store()
	app.state.cleanup_task = asyncio.create_task(_cleanup_watcher())
	asyncio.create_task(_check_connectivity())


@app.on_event("shutdown")
async def shutdown_event():
	task = getattr(app.state, "cleanup_task", None)
	if task is not None:
		task.cancel()
	await services.shutdown()
