from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskgrid.db import init_db
from taskgrid.core import get_settings
from taskgrid.core.exceptions import TaskgridError
from taskgrid.api.v1 import api_router
from taskgrid.core.middleware import RequestLoggingMiddleware
from taskgrid.logs.server_log import api_logger

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    try:
        await init_db()
        api_logger.info("Database initialized")
    except Exception as e:
        api_logger.error(f"Database initialization failed: {e}")
        raise

    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Boards with typed properties, table/kanban views and per-board roles",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(TaskgridError)
async def taskgrid_error_handler(request: Request, exc: TaskgridError):
    """Domain errors -> 400/403/404/503 with a JSON detail"""
    if exc.status_code >= 500:
        api_logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(api_router)


@app.get("/")
async def root(request: Request):
    """Health check endpoint"""
    api_logger.info(f"Received health check request: {request.method} {request.url}")
    return {"message": f"{settings.PROJECT_NAME} is running"}


if __name__ == "__main__":
    import uvicorn

    api_logger.info("Starting server on http://0.0.0.0:8000")
    uvicorn.run(
        "taskgrid.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
