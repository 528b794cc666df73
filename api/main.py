import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from db.catalog import MovieCatalog, MutationOutcome
from db.postgres import PostgresConfig, RecordStore, create_pool
from db.search_index import ElasticsearchConfig, SearchIndex, create_client
from implementation.classes.errors import (
    MovieNotFoundError,
    MovieValidationError,
    RecordStoreUnavailableError,
    SearchIndexUnavailableError,
)

load_dotenv()
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the process-wide Postgres pool and Elasticsearch client, wire them
    into a MovieCatalog, and close both on shutdown.

    Postgres must be reachable at startup. An unreachable index is only
    logged: writes still succeed and backfill can repair the index later.
    """
    es_config = ElasticsearchConfig.from_env()
    pool = create_pool(PostgresConfig.from_env())
    es_client = create_client(es_config)

    try:
        await pool.open()
        # Fail fast if Postgres is unreachable
        await pool.check()
        record_store = RecordStore(pool)
        await record_store.ensure_schema()

        search_index = SearchIndex(es_client, es_config.index)
        try:
            await search_index.ensure_index()
        except Exception as e:
            logger.warning("Could not ensure search index '%s' at startup: %s", es_config.index, e)

        app.state.catalog = MovieCatalog(record_store, search_index)
        yield
    finally:
        await es_client.close()
        await pool.close()


app = FastAPI(lifespan=lifespan)

# Browser frontends call this API directly. CORS_ORIGINS is a comma-separated list.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_catalog(request: Request) -> MovieCatalog:
    return request.app.state.catalog


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


def _mutation_body(outcome: MutationOutcome, message: str) -> dict:
    return {
        "success": True,
        "data": outcome.record.model_dump(mode="json"),
        "index_synced": outcome.index_synced,
        "message": message,
    }


# ===============================
#        EXCEPTION HANDLERS
# ===============================

@app.exception_handler(MovieNotFoundError)
async def _not_found(_: Request, exc: MovieNotFoundError) -> JSONResponse:
    return _error(404, "Movie not found")


@app.exception_handler(MovieValidationError)
async def _invalid(_: Request, exc: MovieValidationError) -> JSONResponse:
    return _error(400, str(exc), errors=exc.errors)


@app.exception_handler(RecordStoreUnavailableError)
async def _record_store_down(_: Request, exc: RecordStoreUnavailableError) -> JSONResponse:
    logger.error("Record store unavailable: %s", exc)
    return _error(503, "Movie database unavailable")


@app.exception_handler(SearchIndexUnavailableError)
async def _search_index_down(_: Request, exc: SearchIndexUnavailableError) -> JSONResponse:
    logger.error("Search index unavailable: %s", exc)
    return _error(503, "Search unavailable")


@app.exception_handler(RequestValidationError)
async def _malformed_request(_: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(400, "Invalid request", errors=jsonable_encoder(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def _http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def _unexpected(_: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error: %s", exc)
    return _error(500, "Internal server error")


# ===============================
#             ROUTES
# ===============================

@app.get("/health")
async def health_check(catalog: MovieCatalog = Depends(get_catalog)) -> dict:
    """
    Report connectivity of both stores: 'ok' or the error message.
    """
    return {
        "postgres": await catalog.record_store.check(),
        "elasticsearch": await catalog.search_index.check(),
    }


@app.get("/api/movies/search")
async def search_movies(
    q: str = "",
    page: Optional[str] = None,
    page_size: Optional[str] = None,
    catalog: MovieCatalog = Depends(get_catalog),
) -> dict:
    result = await catalog.search(q, page, page_size)
    return {
        "success": True,
        "data": [hit.model_dump(mode="json") for hit in result.results],
        "total": result.total,
        "count": len(result.results),
        "page": result.page,
        "page_size": result.page_size,
    }


@app.get("/api/movies")
async def browse_movies(
    is_hit: Optional[str] = None,
    year: Optional[str] = None,
    min_budget: Optional[str] = None,
    max_budget: Optional[str] = None,
    page: Optional[str] = None,
    catalog: MovieCatalog = Depends(get_catalog),
) -> dict:
    result = await catalog.browse(
        is_hit=is_hit,
        year=year,
        min_budget=min_budget,
        max_budget=max_budget,
        page=page,
    )
    return {
        "success": True,
        "data": [record.model_dump(mode="json") for record in result.records],
        "count": len(result.records),
        "page": result.page,
        "page_size": result.page_size,
    }


@app.get("/api/movies/{movie_id}")
async def get_movie(movie_id: str, catalog: MovieCatalog = Depends(get_catalog)) -> dict:
    record = await catalog.get(movie_id)
    if record is None:
        raise MovieNotFoundError(movie_id)
    return {"success": True, "data": record.model_dump(mode="json")}


@app.post("/api/movies", status_code=201)
async def create_movie(
    payload: dict = Body(...),
    catalog: MovieCatalog = Depends(get_catalog),
) -> dict:
    outcome = await catalog.create(payload)
    return _mutation_body(outcome, "Movie created successfully")


@app.put("/api/movies/{movie_id}")
async def update_movie(
    movie_id: str,
    payload: dict = Body(...),
    catalog: MovieCatalog = Depends(get_catalog),
) -> dict:
    outcome = await catalog.update(movie_id, payload)
    if outcome is None:
        raise MovieNotFoundError(movie_id)
    return _mutation_body(outcome, "Movie updated successfully")


@app.delete("/api/movies/{movie_id}")
async def delete_movie(movie_id: str, catalog: MovieCatalog = Depends(get_catalog)) -> dict:
    outcome = await catalog.remove(movie_id)
    if outcome is None:
        raise MovieNotFoundError(movie_id)
    return _mutation_body(outcome, "Movie deleted successfully")
