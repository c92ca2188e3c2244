"""FastAPI application exposing submission, status, queue info and media routes."""

from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ad_intake import __version__
from ad_intake.config import Settings
from ad_intake.pipeline.callback import CallbackDispatcher
from ad_intake.pipeline.repository import IntakeRepository
from ad_intake.pipeline.services import IntakeService, JobSubmission, SubmissionValidationError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-KEY"


class ExtractRequest(BaseModel):
    message_id: str
    text: str
    agent: str
    source: str | None = None


class MediaRequest(BaseModel):
    file: str


def create_app(settings: Settings) -> FastAPI:
    repository = IntakeRepository(
        settings.db_path,
        max_deliveries=settings.queue.max_deliveries,
        busy_timeout_ms=settings.queue.busy_timeout_ms,
    )
    repository.init_schema()
    callback = CallbackDispatcher(
        url=settings.dispatch.callback_api_url,
        api_key=settings.dispatch.callback_api_key,
        timeout_seconds=settings.dispatch.timeout_seconds,
    )
    service = IntakeService(
        repository=repository,
        max_concurrent_jobs=settings.max_concurrent_jobs,
        callback=callback,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            callback.close()
            repository.close()

    app = FastAPI(title="Ad Intake", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_api_key(
        api_key: str | None = Header(default=None, alias=API_KEY_HEADER),
    ) -> None:
        if not api_key:
            raise HTTPException(status_code=403, detail="Forbidden: API key is missing.")
        expected = settings.api_secret_token
        if not expected or not hmac.compare_digest(api_key, expected):
            raise HTTPException(status_code=401, detail="Unauthorized: Invalid API Key.")

    guarded = [Depends(require_api_key)]

    @app.get("/")
    def health() -> dict[str, Any]:
        return {"ok": True, "service": "ad-intake"}

    @app.post("/extract", dependencies=guarded)
    def extract(request: ExtractRequest) -> dict[str, Any]:
        try:
            job = service.submit(
                JobSubmission(
                    message_id=request.message_id,
                    text=request.text,
                    agent=request.agent,
                    source=request.source,
                ),
            )
        except SubmissionValidationError as error:
            raise HTTPException(status_code=422, detail=str(error)) from error
        return {
            "message_id": job.message_id,
            "status": job.status.value,
            "source": job.source,
            "created_at": job.created_at.isoformat(),
        }

    @app.get("/status/{message_id}", dependencies=guarded)
    def status(message_id: str) -> dict[str, Any]:
        job = service.get_status(message_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Message not found")
        return job.to_status_payload()

    @app.get("/queue/info", dependencies=guarded)
    def queue_info() -> dict[str, int]:
        return service.queue_info().to_payload()

    @app.post("/media", dependencies=guarded)
    def media(request: MediaRequest) -> dict[str, Any]:
        try:
            service.register_media(request.file)
        except SubmissionValidationError as error:
            raise HTTPException(status_code=422, detail=str(error)) from error
        return {"ok": True}

    return app
