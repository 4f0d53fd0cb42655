from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=["health"])


@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
def root():
	return "Server is Healthy"


@router.get("/api", response_class=PlainTextResponse)
def api_root():
	return "Polyglot Pal API is running (Stateful Mode)"


@router.get("/health")
def health():
	return {"ok": True}
