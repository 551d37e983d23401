from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sia.api.routes import allocation, health
from sia.core.config import get_settings
from sia.core.exceptions import AppError
from sia.core.logging_setup import configure_logging
from sia.services.orchestrator import AllocationOrchestrator

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    app.state.orchestrator = AllocationOrchestrator.from_settings(settings)
    try:
        yield
    finally:
        await app.state.orchestrator.aclose()
        app.state.orchestrator = None


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )

app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(allocation.router, prefix=f"{settings.api_prefix}/allocation", tags=["allocation"])
