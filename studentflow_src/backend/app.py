import os
import logging
from typing import Optional, List, Dict, Any
from fastapi import FastAPI, Depends, HTTPException, Request, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, ConfigDict, Field
from dotenv import load_dotenv

from db import init_db, engine
from auth import get_current_user_id
from llm import build_provider_chain
from ai_service import AIService
from rate_limiter import RateLimiter
from errors import ValidationError

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "3002"))
AI_RATE_LIMIT_MAX = int(os.getenv("AI_RATE_LIMIT_MAX", "10"))
AI_RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("AI_RATE_LIMIT_WINDOW_SECONDS", "60"))

ALLOWED_ORIGINS = [o for o in [
    "http://127.0.0.1:5173",
    "http://localhost:5173",
    "http://localhost:5174",
    "http://localhost:5175",
    os.getenv("FRONTEND_URL"),
] if o]

app = FastAPI(title="Student Flow PM API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-User-Id"],
)

app.state.rate_limiter = RateLimiter(max_requests=AI_RATE_LIMIT_MAX, window_seconds=AI_RATE_LIMIT_WINDOW_SECONDS)
app.state.ai_service = AIService(build_provider_chain())

# --------- Errors ---------
class RateLimitExceeded(Exception):
    def __init__(self, retry_after: int):
        super().__init__(f"Retry after {retry_after}s")
        self.retry_after = retry_after

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"error": "Too many requests", "retryAfter": exc.retry_after},
        headers={"Retry-After": str(exc.retry_after)},
    )

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc)})

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return JSONResponse(status_code=404, content={"error": "Not Found", "path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("[ERROR] %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

# --------- Schemas ---------
class AnalyzeDocumentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    content: Optional[str] = None
    project_id: Optional[str] = Field(default=None, alias="projectId")

class GenerateSuggestionsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    project_id: Optional[str] = Field(default=None, alias="projectId")
    tasks: Optional[List[Dict[str, Any]]] = None

# --------- Dependencies ---------
def get_ai_service(request: Request) -> AIService:
    return request.app.state.ai_service

async def ai_rate_limit(request: Request, user_id: str = Depends(get_current_user_id)) -> str:
    """Admit at most AI_RATE_LIMIT_MAX calls per user and route per window."""
    retry_after = request.app.state.rate_limiter.hit(f"{user_id}:{request.url.path}")
    if retry_after is not None:
        raise RateLimitExceeded(retry_after)
    return user_id

# --------- Routes ---------
@app.on_event("startup")
async def on_startup():
    await init_db()
    app.state.rate_limiter.start()
    logger.info("Student Flow PM API ready (AI enabled: %s)", app.state.ai_service.enabled)

@app.on_event("shutdown")
async def on_shutdown():
    await app.state.rate_limiter.stop()
    await engine.dispose()

@app.get("/api/health")
async def health_check(service: AIService = Depends(get_ai_service)):
    return {"status": "ok", "aiEnabled": service.enabled}

@app.get("/api/projects/{project_id}/ai/health")
async def project_health(project_id: str, user_id: str = Depends(ai_rate_limit),
                         service: AIService = Depends(get_ai_service)):
    return await service.calculate_project_health(project_id, user_id)

@app.get("/api/projects/{project_id}/ai/suggestions")
async def project_suggestions(project_id: str, user_id: str = Depends(ai_rate_limit),
                              service: AIService = Depends(get_ai_service)):
    return await service.suggest_next_tasks(project_id, user_id)

@app.get("/api/projects/{project_id}/ai/report")
async def project_report(project_id: str, user_id: str = Depends(ai_rate_limit),
                         service: AIService = Depends(get_ai_service)):
    return await service.generate_insights_report(project_id, user_id)

@app.get("/api/ai/global-health")
async def global_health(user_id: str = Depends(ai_rate_limit), service: AIService = Depends(get_ai_service)):
    return await service.calculate_global_health(user_id)

@app.get("/api/ai/global-suggestions")
async def global_suggestions(user_id: str = Depends(ai_rate_limit), service: AIService = Depends(get_ai_service)):
    return await service.suggest_next_global_tasks(user_id)

@app.get("/api/ai/global-report")
async def global_report(user_id: str = Depends(ai_rate_limit), service: AIService = Depends(get_ai_service)):
    return await service.generate_global_insights_report(user_id)

@app.post("/api/ai/analyze-document")
async def analyze_document(payload: AnalyzeDocumentPayload, user_id: str = Depends(ai_rate_limit),
                           service: AIService = Depends(get_ai_service)):
    if not payload.content:
        raise ValidationError("Content is required")
    return await service.analyze_document(payload.content, payload.project_id, user_id)

@app.post("/api/ai/analyze-file")
async def analyze_file(file: UploadFile = File(...), project_id: Optional[str] = Form(default=None, alias="projectId"),
                       user_id: str = Depends(ai_rate_limit), service: AIService = Depends(get_ai_service)):
    data = await file.read()
    mime_type = file.content_type or "application/octet-stream"
    return await service.analyze_file(data, mime_type, file.filename or "upload", project_id, user_id)

@app.post("/api/ai/generate-suggestions")
async def generate_suggestions(payload: GenerateSuggestionsPayload, user_id: str = Depends(ai_rate_limit),
                               service: AIService = Depends(get_ai_service)):
    if payload.tasks is None:
        raise ValidationError("Tasks array is required")
    return await service.generate_suggestions_from_tasks(payload.project_id, payload.tasks, user_id)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host=APP_HOST, port=APP_PORT)
