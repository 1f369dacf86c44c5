"""FastAPI application for the review and publication workflow.

All routes are scoped to a workspace. The caller is identified by the
``X-User-ID`` and ``X-Workspace-Role`` headers, which an upstream identity
gateway resolves for the workspace in the path.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..env import load_env
from . import schemas
from .errors import ValidationError, WorkflowError
from .notifications import Notifier
from .permissions import Principal
from .schema.enums import JournalStatus, NoteStatus, ReviewPriority, ReviewStatus, WorkspaceRole
from .service import Clock, LedgerSettings
from .workflow import ReviewWorkflow

__all__ = ["create_app", "LedgerSettings"]

logger = structlog.get_logger(__name__)


def create_app(
    settings: LedgerSettings | None = None,
    *,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application for the review workflow."""

    if settings is None:
        load_env()
        settings = LedgerSettings.from_env()
    workflow = ReviewWorkflow.from_settings(settings, notifier=notifier, clock=clock)

    @asynccontextmanager
    async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            workflow.close()

    app = FastAPI(
        title="Clinical Ledger API",
        version="1.0.0",
        description="Review and publication workflow for clinical case notes",
        lifespan=_lifespan,
    )
    app.state.workflow = workflow

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_principal(
        x_user_id: Optional[str] = Header(None),
        x_workspace_role: Optional[str] = Header(None),
    ) -> Principal:
        if not x_user_id or not x_workspace_role:
            raise HTTPException(status_code=401, detail="Authentication required")
        try:
            return Principal(uuid.UUID(x_user_id), WorkspaceRole(x_workspace_role.lower()))
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed identity headers") from None

    @app.exception_handler(WorkflowError)
    async def _handle_workflow_error(request: Request, exc: WorkflowError):
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": exc.message, "kind": exc.kind},
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "detail": jsonable_encoder(exc.errors()),
                "kind": ValidationError.kind,
            },
        )

    @app.exception_handler(Exception)
    async def _handle_errors(request: Request, exc: Exception):
        if isinstance(exc, HTTPException):
            raise exc
        logger.error("api.unhandled_error", path=request.url.path, error=repr(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "error": str(exc)},
        )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    # ========================================================================
    # Notes
    # ========================================================================

    @app.post(
        "/v1/workspaces/{workspace_id}/notes",
        response_model=schemas.NoteResponse,
        status_code=201,
    )
    def create_note(
        workspace_id: uuid.UUID,
        request: schemas.NoteCreateRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteResponse:
        return workflow.create_note(workspace_id, principal, request).unwrap()

    @app.get("/v1/workspaces/{workspace_id}/notes", response_model=schemas.NoteListResponse)
    def list_notes(
        workspace_id: uuid.UUID,
        note_status: Optional[NoteStatus] = Query(None, alias="status"),
        author_id: Optional[uuid.UUID] = Query(None),
        page: int = Query(1, ge=1),
        per_page: Optional[int] = Query(None, ge=1),
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteListResponse:
        return workflow.list_notes(
            workspace_id,
            principal,
            status=note_status,
            author_id=author_id,
            page=page,
            per_page=per_page,
        ).unwrap()

    @app.get("/v1/workspaces/{workspace_id}/notes/{note_id}", response_model=schemas.NoteResponse)
    def get_note(
        workspace_id: uuid.UUID,
        note_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteResponse:
        return workflow.get_note(workspace_id, principal, note_id).unwrap()

    @app.patch("/v1/workspaces/{workspace_id}/notes/{note_id}", response_model=schemas.NoteResponse)
    def update_note(
        workspace_id: uuid.UUID,
        note_id: uuid.UUID,
        request: schemas.NoteUpdateRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteResponse:
        return workflow.update_note(workspace_id, principal, note_id, request).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/notes/{note_id}/publish",
        response_model=schemas.NoteResponse,
    )
    def publish_note(
        workspace_id: uuid.UUID,
        note_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteResponse:
        return workflow.publish_note(workspace_id, principal, note_id).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/notes/{note_id}/archive",
        response_model=schemas.NoteResponse,
    )
    def archive_note(
        workspace_id: uuid.UUID,
        note_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteResponse:
        return workflow.archive_note(workspace_id, principal, note_id).unwrap()

    # ========================================================================
    # Review requests
    # ========================================================================

    @app.post(
        "/v1/workspaces/{workspace_id}/reviews",
        response_model=schemas.ReviewRequestResponse,
        status_code=201,
    )
    def submit_for_review(
        workspace_id: uuid.UUID,
        request: schemas.ReviewSubmitRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.ReviewRequestResponse:
        return workflow.submit_for_review(workspace_id, principal, request).unwrap()

    @app.get(
        "/v1/workspaces/{workspace_id}/reviews",
        response_model=schemas.ReviewRequestListResponse,
    )
    def list_review_requests(
        workspace_id: uuid.UUID,
        review_status: Optional[ReviewStatus] = Query(None, alias="status"),
        reviewer_id: Optional[uuid.UUID] = Query(None),
        requested_by: Optional[uuid.UUID] = Query(None),
        priority: Optional[ReviewPriority] = Query(None),
        note_id: Optional[uuid.UUID] = Query(None),
        page: int = Query(1, ge=1),
        per_page: Optional[int] = Query(None, ge=1),
        principal: Principal = Depends(get_principal),
    ) -> schemas.ReviewRequestListResponse:
        return workflow.list_review_requests(
            workspace_id,
            principal,
            status=review_status,
            reviewer_id=reviewer_id,
            requested_by=requested_by,
            priority=priority,
            note_id=note_id,
            page=page,
            per_page=per_page,
        ).unwrap()

    @app.get(
        "/v1/workspaces/{workspace_id}/reviews/assigned",
        response_model=list[schemas.ReviewRequestResponse],
    )
    def list_assigned_reviews(
        workspace_id: uuid.UUID,
        reviewer_id: Optional[uuid.UUID] = Query(None),
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.ReviewRequestResponse]:
        return workflow.list_assigned_reviews(workspace_id, principal, reviewer_id).unwrap()

    @app.get(
        "/v1/workspaces/{workspace_id}/reviews/unassigned",
        response_model=list[schemas.ReviewRequestResponse],
    )
    def list_unassigned_reviews(
        workspace_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.ReviewRequestResponse]:
        return workflow.list_unassigned_reviews(workspace_id, principal).unwrap()

    @app.get(
        "/v1/workspaces/{workspace_id}/reviews/{request_id}",
        response_model=schemas.ReviewRequestResponse,
    )
    def get_review_request(
        workspace_id: uuid.UUID,
        request_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> schemas.ReviewRequestResponse:
        return workflow.get_review_request(workspace_id, principal, request_id).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/reviews/{request_id}/assign",
        response_model=schemas.ReviewRequestResponse,
    )
    def assign_reviewer(
        workspace_id: uuid.UUID,
        request_id: uuid.UUID,
        request: schemas.AssignReviewerRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.ReviewRequestResponse:
        return workflow.assign_reviewer(workspace_id, principal, request_id, request).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/reviews/{request_id}/verdict",
        response_model=schemas.ReviewRequestResponse,
    )
    def submit_verdict(
        workspace_id: uuid.UUID,
        request_id: uuid.UUID,
        request: schemas.VerdictRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.ReviewRequestResponse:
        return workflow.submit_verdict(workspace_id, principal, request_id, request).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/reviews/{request_id}/reopen",
        response_model=schemas.ReviewRequestResponse,
    )
    def reopen_review(
        workspace_id: uuid.UUID,
        request_id: uuid.UUID,
        request: Optional[schemas.ReopenRequest] = None,
        principal: Principal = Depends(get_principal),
    ) -> schemas.ReviewRequestResponse:
        note_id = request.note_id if request is not None else None
        return workflow.reopen_review(workspace_id, principal, request_id, note_id).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/reviews/{request_id}/comments",
        response_model=schemas.ReviewActionResponse,
        status_code=201,
    )
    def add_comment(
        workspace_id: uuid.UUID,
        request_id: uuid.UUID,
        request: schemas.CommentRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.ReviewActionResponse:
        return workflow.add_comment(workspace_id, principal, request_id, request.text).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/reviews/{request_id}/revisions",
        response_model=schemas.ReviewActionResponse,
        status_code=201,
    )
    def submit_revision(
        workspace_id: uuid.UUID,
        request_id: uuid.UUID,
        request: schemas.RevisionRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.ReviewActionResponse:
        return workflow.submit_revision(workspace_id, principal, request_id, request.summary).unwrap()

    @app.get(
        "/v1/workspaces/{workspace_id}/reviews/{request_id}/actions",
        response_model=list[schemas.ReviewActionResponse],
    )
    def list_review_actions(
        workspace_id: uuid.UUID,
        request_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.ReviewActionResponse]:
        return workflow.list_review_actions(workspace_id, principal, request_id).unwrap()

    # ========================================================================
    # Journals
    # ========================================================================

    @app.post(
        "/v1/workspaces/{workspace_id}/journals",
        response_model=schemas.JournalDetailResponse,
        status_code=201,
    )
    def generate_journal(
        workspace_id: uuid.UUID,
        request: schemas.JournalGenerateRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.JournalDetailResponse:
        return workflow.generate_journal(workspace_id, principal, request).unwrap()

    @app.get("/v1/workspaces/{workspace_id}/journals", response_model=schemas.JournalListResponse)
    def list_journals(
        workspace_id: uuid.UUID,
        journal_status: Optional[JournalStatus] = Query(None, alias="status"),
        year: Optional[int] = Query(None, ge=2000, le=9999),
        page: int = Query(1, ge=1),
        per_page: Optional[int] = Query(None, ge=1),
        principal: Principal = Depends(get_principal),
    ) -> schemas.JournalListResponse:
        return workflow.list_journals(
            workspace_id,
            principal,
            status=journal_status,
            year=year,
            page=page,
            per_page=per_page,
        ).unwrap()

    @app.get(
        "/v1/workspaces/{workspace_id}/journals/{journal_id}",
        response_model=schemas.JournalDetailResponse,
    )
    def get_journal(
        workspace_id: uuid.UUID,
        journal_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> schemas.JournalDetailResponse:
        return workflow.get_journal(workspace_id, principal, journal_id).unwrap()

    @app.patch(
        "/v1/workspaces/{workspace_id}/journals/{journal_id}",
        response_model=schemas.JournalResponse,
    )
    def update_journal(
        workspace_id: uuid.UUID,
        journal_id: uuid.UUID,
        request: schemas.JournalUpdateRequest,
        principal: Principal = Depends(get_principal),
    ) -> schemas.JournalResponse:
        return workflow.update_journal(workspace_id, principal, journal_id, request).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/journals/{journal_id}/regenerate",
        response_model=schemas.JournalDetailResponse,
    )
    def regenerate_journal(
        workspace_id: uuid.UUID,
        journal_id: uuid.UUID,
        recommended_only: Optional[bool] = Query(None),
        principal: Principal = Depends(get_principal),
    ) -> schemas.JournalDetailResponse:
        return workflow.regenerate_journal(
            workspace_id, principal, journal_id, recommended_only
        ).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/journals/{journal_id}/publish",
        response_model=schemas.JournalResponse,
    )
    def publish_journal(
        workspace_id: uuid.UUID,
        journal_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> schemas.JournalResponse:
        return workflow.publish_journal(workspace_id, principal, journal_id).unwrap()

    @app.post(
        "/v1/workspaces/{workspace_id}/journals/{journal_id}/archive",
        response_model=schemas.JournalResponse,
    )
    def archive_journal(
        workspace_id: uuid.UUID,
        journal_id: uuid.UUID,
        principal: Principal = Depends(get_principal),
    ) -> schemas.JournalResponse:
        return workflow.archive_journal(workspace_id, principal, journal_id).unwrap()

    return app

