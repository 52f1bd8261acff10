"""
Jira Integration Routes
Handles OAuth 3LO flow, site/project discovery, and the sync preview,
execution and import operations for Jira Cloud.
"""
from fastapi import APIRouter, HTTPException, Request, Depends, Query
from fastapi.responses import RedirectResponse, JSONResponse
from datetime import datetime, timezone
from urllib.parse import urlencode
import secrets
import logging

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_db
from db.integration_models import SyncRun, SyncRunKind, SyncRunStatus
from routes.auth import get_current_user_id, current_user_id
from services.issue_type_service import resolve_issue_types
from services.jira_import_service import JiraImportService
from services.jira_service import JiraOAuthService, JiraAPIError, AuthenticationError
from services.logging_service import log_sync_run
from services.project_service import ProjectService
from services.rate_limit import limiter, limit_sync, RATE_LIMITS
from services.sync_execute_service import SyncExecuteService
from services.sync_preview_service import SyncPreviewService
from services.ticket_service import TicketService
from services.token_service import JiraTokenService, JiraNotConnectedError

from .shared import (
    ConnectJiraRequest,
    SyncPreviewRequest,
    SyncExecuteRequest,
    ImportRequest,
    CreateProjectFromJiraRequest,
    load_sync_context,
    record_sync_run,
    success_response,
    error_response,
    error_response_for,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jira", tags=["jira"])


def _redirect_with(callback_url: str, **params: str) -> RedirectResponse:
    separator = "&" if "?" in callback_url else "?"
    return RedirectResponse(url=f"{callback_url}{separator}{urlencode({**params, 'provider': 'jira'})}")


# ============================================
# OAuth Endpoints
# ============================================

@router.post("/connect")
async def initiate_jira_oauth(
    request: Request,
    body: ConnectJiraRequest,
    session: AsyncSession = Depends(get_db)
):
    """Initiate Jira Cloud OAuth 2.0 (3LO) flow"""
    user_id = await get_current_user_id(request, session)

    oauth_service = JiraOAuthService()
    if not oauth_service.is_configured():
        raise HTTPException(
            status_code=503,
            detail="Jira integration is not configured. Please add JIRA_OAUTH_CLIENT_ID, JIRA_OAUTH_CLIENT_SECRET, and JIRA_OAUTH_REDIRECT_URI to environment."
        )

    state = f"{user_id}|{body.frontend_callback_url}|{secrets.token_urlsafe(16)}"
    authorization_url = oauth_service.generate_authorization_url(state)

    return {"authorization_url": authorization_url}


@router.get("/callback")
async def jira_oauth_callback(
    code: str = Query(None),
    state: str = Query(None),
    error: str = Query(None),
    error_description: str = Query(None),
    session: AsyncSession = Depends(get_db)
):
    """Handle Jira OAuth callback"""
    if error:
        logger.error(f"Jira OAuth error: {error} - {error_description}")
        if state:
            parts = state.split("|")
            if len(parts) >= 2:
                return _redirect_with(parts[1], error=error)
        return JSONResponse(
            status_code=400,
            content={"error": error, "description": error_description}
        )

    if not code or not state:
        return JSONResponse(
            status_code=400,
            content={"error": "Missing code or state parameter"}
        )

    parts = state.split("|")
    if len(parts) < 3 or not parts[0] or not parts[1]:
        return JSONResponse(status_code=400, content={"error": "Invalid state parameter"})
    user_id, frontend_callback_url = parts[0], parts[1]

    try:
        oauth_service = JiraOAuthService()
        tokens = await oauth_service.exchange_code_for_tokens(code)
        resources = await oauth_service.get_accessible_resources(tokens["access_token"])

        if not resources:
            return _redirect_with(frontend_callback_url, error="No accessible Jira sites found")

        integration = await JiraTokenService(session, oauth_service).save_tokens(user_id, tokens, resources[0])
        logger.info(f"Jira integration connected for user {user_id}, cloud_id: {integration.external_account_id}")

        return _redirect_with(frontend_callback_url, success="true")

    except JiraAPIError as e:
        logger.error(f"Jira OAuth callback error: {e}")
        return _redirect_with(frontend_callback_url, error=str(e))


@router.post("/disconnect")
async def disconnect_jira(
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """Disconnect Jira integration"""
    user_id = await get_current_user_id(request, session)

    if not await JiraTokenService(session).disconnect(user_id):
        return {"status": "not_connected"}

    return {"status": "disconnected"}


# ============================================
# Data Endpoints
# ============================================

@router.get("/sites")
async def get_jira_sites(
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """Get accessible Jira sites (cloud IDs) for the user"""
    user_id = await get_current_user_id(request, session)
    tokens = JiraTokenService(session)

    try:
        access_token = await tokens.get_valid_access_token(user_id)
        sites = await JiraOAuthService().get_accessible_resources(access_token)
    except (JiraNotConnectedError, JiraAPIError) as e:
        return error_response_for(e, "list Jira sites")

    integration = await tokens.get_user_integration(user_id)
    return success_response(
        sites=sites,
        current_site={
            "id": integration.external_account_id,
            "name": integration.external_account_name,
            "url": integration.site_url
        }
    )


@router.get("/projects")
async def get_jira_projects(
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """Get projects for the connected Jira site"""
    user_id = await get_current_user_id(request, session)

    try:
        jira = await JiraTokenService(session).get_jira_service(user_id)
        projects = await jira.get_projects()
    except (JiraNotConnectedError, JiraAPIError) as e:
        return error_response_for(e, "list Jira projects")

    return success_response(projects=projects)


@router.get("/projects/{project_key}/issue-types")
async def get_jira_issue_types(
    project_key: str,
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """Issue types of a Jira project and the one each ticket type would be pushed as"""
    user_id = await get_current_user_id(request, session)

    try:
        jira = await JiraTokenService(session).get_jira_service(user_id)
        issue_types = await jira.get_issue_types_for_project(project_key)
    except (JiraNotConnectedError, JiraAPIError) as e:
        return error_response_for(e, "list Jira issue types")

    type_map = resolve_issue_types(issue_types)
    return success_response(
        issue_types=[it.model_dump() for it in issue_types],
        mapping=type_map.model_dump(),
        missing=type_map.missing
    )


# ============================================
# Sync Preview, Execution & Import
# ============================================

@router.post("/sync/{project_id}/preview")
@limiter.limit(RATE_LIMITS["sync_preview"])
async def preview_jira_sync(
    project_id: int,
    request: Request,
    body: SyncPreviewRequest,
    user_id: str = Depends(current_user_id),
    session: AsyncSession = Depends(get_db)
):
    """Compute the changes a sync would make, without making them"""
    try:
        context = await load_sync_context(session, user_id, project_id, body.jira_project_key)
        preview = await SyncPreviewService(TicketService(session), context.jira).preview(
            project_id, context.jira_project_key
        )
    except Exception as e:
        return error_response_for(e, "preview sync")

    return success_response(jira_project_key=context.jira_project_key, **preview.to_dict())


@router.post("/sync/{project_id}/execute")
@limit_sync()
async def execute_jira_sync(
    project_id: int,
    request: Request,
    body: SyncExecuteRequest,
    user_id: str = Depends(current_user_id),
    session: AsyncSession = Depends(get_db)
):
    """Apply a previewed change set to Jira"""
    try:
        context = await load_sync_context(session, user_id, project_id, body.jira_project_key)
    except Exception as e:
        return error_response_for(e, "sync")

    started_at = datetime.now(timezone.utc)
    try:
        result = await SyncExecuteService(TicketService(session), context.jira).execute(
            project_id, context.jira_project_key, body.changes
        )
    except Exception as e:
        await session.rollback()
        await record_sync_run(
            session, user_id, context, SyncRunKind.EXECUTE.value, started_at,
            SyncRunStatus.FAILED.value, errors={"error": str(e)}
        )
        return error_response_for(e, "sync")

    run = await record_sync_run(
        session, user_id, context, SyncRunKind.EXECUTE.value, started_at,
        result.status, summary=result.summary,
        errors={"failed": result.failed} if result.failed else None
    )
    log_sync_run(SyncRunKind.EXECUTE.value, user_id, project_id, context.jira_project_key, result.summary)

    return success_response(run_id=run.run_id, **result.to_dict())


@router.post("/sync/{project_id}/import")
@limiter.limit(RATE_LIMITS["jira_import"])
async def import_from_jira(
    project_id: int,
    request: Request,
    body: ImportRequest,
    user_id: str = Depends(current_user_id),
    session: AsyncSession = Depends(get_db)
):
    """Pull every issue of the Jira project into the local backlog"""
    try:
        context = await load_sync_context(session, user_id, project_id, body.jira_project_key)
    except Exception as e:
        return error_response_for(e, "import from Jira")

    started_at = datetime.now(timezone.utc)
    try:
        result = await JiraImportService(TicketService(session), context.jira).import_all(
            project_id, context.jira_project_key
        )
    except Exception as e:
        await session.rollback()
        await record_sync_run(
            session, user_id, context, SyncRunKind.IMPORT.value, started_at,
            SyncRunStatus.FAILED.value, errors={"error": str(e)}
        )
        return error_response_for(e, "import from Jira")

    summary = {"imported": result.imported_count, "created": result.created, "updated": result.updated}
    run = await record_sync_run(
        session, user_id, context, SyncRunKind.IMPORT.value, started_at,
        SyncRunStatus.SUCCESS.value, summary=summary
    )
    log_sync_run(SyncRunKind.IMPORT.value, user_id, project_id, context.jira_project_key, summary)

    return success_response(run_id=run.run_id, **result.model_dump())


@router.post("/create-project")
@limiter.limit(RATE_LIMITS["jira_import"])
async def create_project_from_jira(
    request: Request,
    body: CreateProjectFromJiraRequest,
    user_id: str = Depends(current_user_id),
    session: AsyncSession = Depends(get_db)
):
    """Create a local project linked to a Jira project and import its issues"""
    tokens = JiraTokenService(session)
    try:
        jira = await tokens.get_jira_service(user_id)
    except (JiraNotConnectedError, AuthenticationError) as e:
        return error_response_for(e, "create project from Jira")

    project = await ProjectService(session).create_project(
        user_id=user_id,
        name=body.name,
        jira_project_key=body.jira_project_key
    )
    project_id = project.id

    try:
        result = await JiraImportService(TicketService(session), jira).import_all(project_id, body.jira_project_key)
    except Exception as e:
        await session.rollback()
        return error_response_for(e, "import from Jira", project_id=project_id)

    return success_response(project_id=project_id, **result.model_dump())


@router.get("/sync/{project_id}/history")
@limiter.limit(RATE_LIMITS["api_read"])
async def get_sync_history(
    project_id: int,
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(current_user_id),
    session: AsyncSession = Depends(get_db)
):
    """Recent sync executions and imports of a project"""
    if not await ProjectService(session).get_project(project_id, user_id):
        return error_response(404, f"Project {project_id} not found")

    result = await session.execute(
        select(SyncRun)
        .where(and_(SyncRun.project_id == project_id, SyncRun.user_id == user_id))
        .order_by(SyncRun.started_at.desc())
        .limit(limit)
    )

    return success_response(runs=[
        {
            "run_id": run.run_id,
            "kind": run.kind,
            "jira_project_key": run.jira_project_key,
            "status": run.status,
            "started_at": run.started_at.isoformat() if run.started_at else None,
            "ended_at": run.ended_at.isoformat() if run.ended_at else None,
            "summary": run.summary_json,
            "errors": run.error_json,
        }
        for run in result.scalars().all()
    ])
