"""
FastAPI Application for Song Recommendations

ENDPOINTS:
==========
1. GET  /recommendations/{user_id}   - Personalized recommendations
2. GET  /songs/{song_id}/similar     - "More like this"
3. POST /admin/data-completion       - complete | validate | stats
4. GET  /admin/data-completion       - Completion stats + model status
5. GET  /health                      - Health check + cache metrics

ERRORS:
=======
- MalformedInputError → 400 (bad limit, unknown hint, bad action)
- SongNotFoundError   → 404
"""

import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from songrec import settings
from songrec.errors import MalformedInputError, SongNotFoundError
from songrec.infra.cache import RecommendationCache
from songrec.infra.database import SqlEventRepository, SqlSongRepository, get_db_manager
from songrec.logs import configure_logging
from songrec.models.entities import RecommendationResult
from songrec.services import Services, build_services

# ============================================================================
# PYDANTIC MODELS
# ============================================================================

class RecommendationResponse(BaseModel):
    song_id: str
    title: str
    artist: str
    album: Optional[str] = None
    year: Optional[int] = None
    genres: List[str] = Field(default_factory=list)
    moods: List[str] = Field(default_factory=list)
    score: float = Field(..., ge=0, le=1)
    rank: int
    sources: List[str]
    rationale: str


class RecommendationList(BaseModel):
    user_id: str
    algorithm: str
    count: int
    recommendations: List[RecommendationResponse]


class SimilarSongsList(BaseModel):
    song_id: str
    count: int
    similar: List[RecommendationResponse]


class DataCompletionRequest(BaseModel):
    """Admin job request"""
    action: str = Field("complete", description="complete, validate or stats")
    song_id: Optional[str] = Field(None, description="Complete a single song")
    dry_run: bool = False
    batch_size: Optional[int] = Field(None, ge=1)
    max_songs: Optional[int] = Field(None, ge=1)


class HealthResponse(BaseModel):
    status: str
    model_status: str
    cache_stats: Dict[str, Any]
    database_connected: bool


def to_response(result: RecommendationResult) -> RecommendationResponse:
    data = result.to_dict()
    data['song_id'] = str(data['song_id'])
    return RecommendationResponse(**data)


# ============================================================================
# FASTAPI APP
# ============================================================================

def create_app(services: Optional[Services] = None, db_path: str = settings.DB_PATH) -> FastAPI:
    """
    Build the API

    With ``services`` given, the app uses them as-is (tests, embedding).
    Otherwise it opens the SQLite database on startup and wires everything
    against it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_manager = None
        if app.state.services is None:
            logger.info("Starting Song Recommendation API...")
            db_manager = await get_db_manager(db_path)
            app.state.services = build_services(
                SqlSongRepository(db_manager),
                SqlEventRepository(db_manager),
                cache=RecommendationCache(),
            )
            app.state.database_connected = True
        logger.info("🚀 API ready!")

        yield

        app.state.services.teardown()
        if db_manager is not None:
            await db_manager.close()
        logger.info("API shutdown complete")

    app = FastAPI(
        title="Song Recommendation API",
        description="Hybrid song recommendations and catalogue data completion",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.database_connected = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_slow_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        if duration > 0.5:
            logger.warning(f"Slow request: {request.url.path} took {duration:.2f}s")
        return response

    @app.exception_handler(MalformedInputError)
    async def malformed_input(request: Request, exc: MalformedInputError):
        return JSONResponse(status_code=400, content={'detail': str(exc)})

    @app.exception_handler(SongNotFoundError)
    async def song_not_found(request: Request, exc: SongNotFoundError):
        return JSONResponse(status_code=404, content={'detail': str(exc)})

    def get_services() -> Services:
        return app.state.services

    # ========================================================================
    # ENDPOINTS
    # ========================================================================

    @app.get("/recommendations/{user_id}", response_model=RecommendationList)
    async def recommendations(user_id: str, limit: int = settings.DEFAULT_LIMIT, algorithm: str = 'hybrid'):
        start_time = time.time()
        results = await get_services().recommendations.get_personalized_recommendations(
            user_id, limit=limit, algorithm_hint=algorithm,
        )
        logger.info(f"Recommendation latency: {(time.time() - start_time) * 1000:.1f}ms")
        return RecommendationList(
            user_id=user_id,
            algorithm=algorithm,
            count=len(results),
            recommendations=[to_response(r) for r in results],
        )

    @app.get("/songs/{song_id}/similar", response_model=SimilarSongsList)
    async def similar_songs(song_id: str, limit: int = 10):
        results = await get_services().recommendations.get_similar_songs(song_id, limit=limit)
        return SimilarSongsList(
            song_id=song_id,
            count=len(results),
            similar=[to_response(r) for r in results],
        )

    @app.post("/admin/data-completion")
    async def run_data_completion(request: DataCompletionRequest):
        completion = get_services().completion

        if request.action == 'complete':
            report = await completion.complete_song_data(
                song_id=request.song_id,
                dry_run=request.dry_run,
                batch_size=request.batch_size,
                max_songs=request.max_songs,
            )
            return {'action': 'complete', **report.to_dict(include_songs=request.dry_run)}
        if request.action == 'validate':
            return {'action': 'validate', **await completion.validate_and_clean(dry_run=request.dry_run)}
        if request.action == 'stats':
            return {'action': 'stats', **await completion.completion_stats()}

        raise MalformedInputError(
            f"Unknown action {request.action!r}, expected complete, validate or stats"
        )

    @app.get("/admin/data-completion")
    async def data_completion_status():
        services = get_services()
        return {
            **await services.completion.completion_stats(),
            'model_status': services.predictor.status.value,
        }

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        services = get_services()
        cache_stats = services.cache.get_metrics() if services.cache is not None else {}
        return {
            'status': 'healthy' if services.predictor.status.value == 'trained' else 'degraded',
            'model_status': services.predictor.status.value,
            'cache_stats': cache_stats,
            'database_connected': app.state.database_connected,
        }

    return app


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(
        create_app(),
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info",
    )
