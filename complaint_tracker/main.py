"""
Application factory.

Nothing is built at import time; serve with

    uvicorn complaint_tracker.main:create_app --factory
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from complaint_tracker.api.complaints import router as complaints_router
from complaint_tracker.core.config import Settings, get_settings
from complaint_tracker.core.exceptions import ComplaintError, ValidationFailed
from complaint_tracker.core.logging import configure_logging
from complaint_tracker.repositories.base import ComplaintRepository
from complaint_tracker.repositories.memory import InMemoryComplaintRepository
from complaint_tracker.services.complaints import ComplaintService
from complaint_tracker.services.events import EventPublisher

logger = logging.getLogger(__name__)


def build_repository(settings: Settings) -> ComplaintRepository:
    if settings.store_backend == "memory":
        logger.warning("using in-memory complaint store; data is not persisted")
        return InMemoryComplaintRepository()

    from complaint_tracker.db.mongo import create_client, get_database
    from complaint_tracker.repositories.complaints import MongoComplaintRepository

    db = get_database(create_client(settings), settings)
    return MongoComplaintRepository(db["complaints"], db["counters"])


def create_app(
    settings: Optional[Settings] = None,
    repo: Optional[ComplaintRepository] = None,
    publisher: Optional[EventPublisher] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format, settings.env)

    if repo is None:
        repo = build_repository(settings)
    service = ComplaintService(repo, settings, publisher=publisher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await repo.ensure_indexes()
        logger.info("%s started (%s store)", settings.app_name, settings.store_backend)
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.complaint_service = service
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ComplaintError)
    async def complaint_error_handler(request: Request, exc: ComplaintError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = {
            ".".join(str(p) for p in err["loc"] if p != "body"): err["msg"]
            for err in exc.errors()
        }
        err = ValidationFailed(fields)
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    app.include_router(complaints_router)

    @app.get("/")
    def root():
        return {"ok": True, "docs": "/docs"}

    return app
