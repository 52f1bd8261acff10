"""
Shared utilities, models, and helpers for integration routes.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Project
from db.integration_models import SyncRun
from services.jira_service import JiraAPIError, JiraRESTService, AuthenticationError
from services.project_service import ProjectService
from services.retry_service import format_user_friendly_error
from services.sync_models import SyncChange
from services.ticket_service import HierarchyError
from services.token_service import JiraTokenService, JiraNotConnectedError

logger = logging.getLogger(__name__)


# ============================================
# Shared Pydantic Models
# ============================================

class ConnectJiraRequest(BaseModel):
    frontend_callback_url: str


class SyncPreviewRequest(BaseModel):
    # Falls back to the project's linked Jira project
    jira_project_key: Optional[str] = None


class SyncExecuteRequest(BaseModel):
    jira_project_key: Optional[str] = None
    changes: List[SyncChange] = Field(default_factory=list)


class ImportRequest(BaseModel):
    jira_project_key: Optional[str] = None


class CreateProjectFromJiraRequest(BaseModel):
    jira_project_key: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)


# ============================================
# Errors & envelopes
# ============================================

class ProjectNotFoundError(LookupError):
    pass


class MissingProjectKeyError(ValueError):
    pass


def success_response(**payload: Any) -> Dict[str, Any]:
    return {"success": True, **payload}


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def error_response_for(error: Exception, action: str, **extra: Any) -> JSONResponse:
    """Translate a sync-flow exception into a {success: false, error} envelope"""
    if isinstance(error, AuthenticationError):
        return error_response(401, str(error), **extra)
    if isinstance(error, JiraNotConnectedError):
        return error_response(400, str(error), **extra)
    if isinstance(error, ProjectNotFoundError):
        return error_response(404, str(error), **extra)
    if isinstance(error, (MissingProjectKeyError, HierarchyError)):
        return error_response(400, str(error), **extra)
    if isinstance(error, JiraAPIError):
        logger.error(f"Jira {action} failed: {error}")
        return error_response(502, format_user_friendly_error(error), **extra)

    logger.error(f"Jira {action} failed unexpectedly: {error}", exc_info=True)
    return error_response(500, f"Failed to {action}: {error}", **extra)


SYNC_PATH_PREFIX = "/api/integrations/jira/sync/"


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed sync bodies get the envelope; every other route keeps FastAPI's {detail}"""
    if not request.url.path.startswith(SYNC_PATH_PREFIX):
        return await request_validation_exception_handler(request, exc)

    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid request: {location}: {first.get('msg', 'validation failed')}" if location else "Invalid request"
    return error_response(422, message, details=jsonable_encoder(errors))


# ============================================
# Helpers
# ============================================

@dataclass
class SyncContext:
    project: Project
    project_id: int
    integration_id: str
    jira: JiraRESTService
    jira_project_key: str


async def load_sync_context(
    session: AsyncSession,
    user_id: str,
    project_id: int,
    jira_project_key: Optional[str] = None
) -> SyncContext:
    """Project, Jira connection and target Jira project for a sync/import call"""
    project = await ProjectService(session).get_project(project_id, user_id)
    if not project:
        raise ProjectNotFoundError(f"Project {project_id} not found")

    key = (jira_project_key or project.jira_project_key or "").strip()
    if not key:
        raise MissingProjectKeyError("No Jira project selected for this project")

    tokens = JiraTokenService(session)
    jira = await tokens.get_jira_service(user_id)
    integration = await tokens.get_user_integration(user_id)

    if not project.jira_project_key:
        project.jira_project_key = key
        await session.commit()

    return SyncContext(
        project=project,
        project_id=project.id,
        integration_id=integration.integration_id,
        jira=jira,
        jira_project_key=key
    )


async def record_sync_run(
    session: AsyncSession,
    user_id: str,
    context: SyncContext,
    kind: str,
    started_at: datetime,
    status: str,
    summary: Optional[Dict[str, Any]] = None,
    errors: Optional[Dict[str, Any]] = None
) -> SyncRun:
    run = SyncRun(
        user_id=user_id,
        integration_id=context.integration_id,
        project_id=context.project_id,
        jira_project_key=context.jira_project_key,
        kind=kind,
        started_at=started_at,
        ended_at=datetime.now(timezone.utc),
        status=status,
        summary_json=summary,
        error_json=errors
    )
    session.add(run)
    await session.commit()
    return run
