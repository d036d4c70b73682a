import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from medqa.cache import AnswerCache
from medqa.config import Settings, get_settings
from medqa.gemini import GeminiClient
from medqa.huggingface import HuggingFaceClient
from medqa.pipeline import UNAVAILABLE_MESSAGE, AnswerPipeline

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# --- Global state ---
http_client: httpx.AsyncClient | None = None
answer_pipeline: AnswerPipeline | None = None


def build_pipeline(s: Settings, client: httpx.AsyncClient, cache: AnswerCache | None = None) -> AnswerPipeline:
    """Wire the cache and the provider chain (primary first) from settings."""
    providers = [
        GeminiClient(
            client, s.gemini_key, model=s.gemini_model,
            timeout=s.gemini_timeout, base_url=s.gemini_base_url,
        ),
        HuggingFaceClient(
            client, s.hf_api_key, model=s.hf_model,
            timeout=s.hf_timeout, base_url=s.hf_base_url,
        ),
    ]
    return AnswerPipeline(
        cache=cache if cache is not None else AnswerCache(s.cache_max_size),
        providers=providers,
        max_question_length=s.max_question_length,
        debug=s.debug,
    )


# --- Lifespan ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    global http_client, answer_pipeline
    s = get_settings()

    http_client = httpx.AsyncClient()
    answer_pipeline = build_pipeline(s, http_client)

    for provider in answer_pipeline.providers:
        if provider.configured:
            logger.info(f"{provider.name} configured (model {provider.model})")
        else:
            logger.warning(f"{provider.name} not configured - calls will be skipped")

    logger.info(
        f"Medical AI gateway started | cache capacity: {answer_pipeline.cache.capacity}"
    )
    yield

    await http_client.aclose()
    logger.info("Medical AI gateway shutting down")


# --- App setup ---

settings = get_settings()

app = FastAPI(title="MedQA Gateway", version="1.0.0", lifespan=lifespan)

# Rate limiter
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": 'Invalid request body. Send JSON like {"question": "..."}'},
    )


# --- Dependencies ---

def get_pipeline() -> AnswerPipeline:
    if answer_pipeline is None:
        raise RuntimeError("Answer pipeline not initialized")
    return answer_pipeline


def _debug_enabled(request: Request) -> bool:
    """Debug flag of the pipeline serving this app, honouring dependency overrides."""
    resolve = request.app.dependency_overrides.get(get_pipeline, get_pipeline)
    try:
        return resolve().debug
    except RuntimeError:
        # Lifespan has not built a pipeline yet
        return get_settings().debug


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Backend error on {request.url.path}: {exc}", exc_info=exc)
    content = {"error": UNAVAILABLE_MESSAGE}
    if _debug_enabled(request):
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# --- Request Models ---

class AskRequest(BaseModel):
    question: str | None = None


# --- Endpoints ---

@app.get("/health")
async def health(pipeline: AnswerPipeline = Depends(get_pipeline)):
    return {
        "status": "ok",
        "cached_questions": pipeline.cache.size,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/ai")
@limiter.limit(settings.rate_limit_ai)
async def ask(request: Request, ask_req: AskRequest, pipeline: AnswerPipeline = Depends(get_pipeline)):
    result = await pipeline.answer(ask_req.question)
    return JSONResponse(status_code=result.status_code, content=result.body)


def run():
    s = get_settings()
    uvicorn.run("medqa.main:app", host=s.host, port=s.port)


if __name__ == "__main__":
    run()
