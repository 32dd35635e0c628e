from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from nexusdash.cache.layer import cache_layer
from nexusdash.core.config import get_settings
from nexusdash.core.errors import ServiceError, service_error_handler, validation_error_handler
from nexusdash.core.middleware import RequestIdMiddleware
from nexusdash.core.observability import configure_logging, log_server_info
from nexusdash.routers import attachments, auth, calendar, context_cards, health, projects, tasks


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await cache_layer.init_cache()
    log_server_info("lifespan", "NexusDash API started", {"cache": cache_layer.get_stats()})
    yield
    await cache_layer.close()


app = FastAPI(
    title="NexusDash API",
    description="Projects, kanban tasks, context cards and Google Calendar in one dashboard",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestIdMiddleware)
app.add_exception_handler(ServiceError, service_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# Include routers
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(context_cards.router)
app.include_router(attachments.task_attachments)
app.include_router(attachments.context_card_attachments)
app.include_router(calendar.router)
app.include_router(auth.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {
        "message": "Welcome to NexusDash API",
        "docs": "/docs",
        "version": "1.0.0",
    }


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "nexusdash.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
