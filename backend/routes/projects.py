"""
Project Routes
Handles project CRUD and editing of the epic → task → subtask backlog
"""
from fastapi import APIRouter, HTTPException, Request, Depends
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from db import get_db
from db.models import Project, TicketType
from services.content_generator import ContentGenerator, generate_backlog, get_content_generator
from services.project_service import ProjectService
from services.rate_limit import limit_api_write
from services.ticket_service import TicketService, TicketOrderUpdate, HierarchyError
from routes.auth import get_current_user_id, current_user_id

router = APIRouter(prefix="/projects", tags=["projects"])
logger = logging.getLogger(__name__)


# ============================================
# PYDANTIC MODELS
# ============================================

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    jira_project_key: Optional[str] = Field(None, max_length=50)
    doc_url: Optional[str] = None
    raw_text: Optional[str] = None

class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    jira_project_key: Optional[str] = Field(None, max_length=50)

class ProjectResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    jira_project_key: Optional[str]
    doc_url: Optional[str]
    created_at: datetime
    updated_at: datetime

class TicketUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    type: Optional[TicketType] = None

class GenerateBacklogRequest(BaseModel):
    # Falls back to the project's stored raw_text
    text: Optional[str] = None
    instruction: Optional[str] = None

class TicketReorder(BaseModel):
    updates: List[TicketOrderUpdate]


def project_to_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        jira_project_key=project.jira_project_key,
        doc_url=project.doc_url,
        created_at=project.created_at,
        updated_at=project.updated_at
    )


async def get_owned_project(session: AsyncSession, project_id: int, user_id: str) -> Project:
    project = await ProjectService(session).get_project(project_id, user_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# ============================================
# PROJECT ENDPOINTS
# ============================================

@router.post("", response_model=ProjectResponse)
async def create_project(
    request: Request,
    body: ProjectCreate,
    session: AsyncSession = Depends(get_db)
):
    """Create a new project"""
    user_id = await get_current_user_id(request, session)
    project = await ProjectService(session).create_project(user_id=user_id, **body.model_dump())
    return project_to_response(project)


@router.get("", response_model=List[ProjectResponse])
async def list_projects(
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """List the current user's projects, newest first"""
    user_id = await get_current_user_id(request, session)
    projects = await ProjectService(session).list_projects(user_id)
    return [project_to_response(p) for p in projects]


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: int,
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    user_id = await get_current_user_id(request, session)
    return project_to_response(await get_owned_project(session, project_id, user_id))


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: int,
    request: Request,
    body: ProjectUpdate,
    session: AsyncSession = Depends(get_db)
):
    user_id = await get_current_user_id(request, session)
    project = await ProjectService(session).update_project(
        project_id, user_id, **body.model_dump(exclude_unset=True)
    )
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project_to_response(project)


@router.delete("/{project_id}")
async def delete_project(
    project_id: int,
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """Delete a project and all of its tickets"""
    user_id = await get_current_user_id(request, session)
    if not await ProjectService(session).delete_project(project_id, user_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"message": "Project deleted"}


# ============================================
# TICKET ENDPOINTS
# ============================================

@router.get("/{project_id}/tickets")
async def list_tickets(
    project_id: int,
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """All tickets of a project, siblings in order"""
    user_id = await get_current_user_id(request, session)
    await get_owned_project(session, project_id, user_id)

    tickets = await TicketService(session).list_tickets(project_id)
    return {"tickets": [t.to_dict() for t in tickets]}


@router.patch("/{project_id}/tickets/{ticket_id}")
@limit_api_write()
async def update_ticket(
    project_id: int,
    ticket_id: int,
    request: Request,
    body: TicketUpdate,
    user_id: str = Depends(current_user_id),
    session: AsyncSession = Depends(get_db)
):
    await get_owned_project(session, project_id, user_id)

    fields = body.model_dump(exclude_unset=True, exclude_none=True)
    if "type" in fields:
        fields["type"] = fields["type"].value

    try:
        ticket = await TicketService(session).edit_ticket(ticket_id, project_id, **fields)
    except LookupError:
        raise HTTPException(status_code=404, detail="Ticket not found")
    except HierarchyError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ticket.to_dict()


@router.put("/{project_id}/tickets/order")
@limit_api_write()
async def reorder_tickets(
    project_id: int,
    request: Request,
    body: TicketReorder,
    user_id: str = Depends(current_user_id),
    session: AsyncSession = Depends(get_db)
):
    """Apply drag-and-drop moves"""
    await get_owned_project(session, project_id, user_id)

    try:
        await TicketService(session).reorder_tickets(project_id, body.updates)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except HierarchyError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"message": "Tickets reordered", "count": len(body.updates)}


@router.delete("/{project_id}/tickets/{ticket_id}")
async def delete_ticket(
    project_id: int,
    ticket_id: int,
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """Delete a ticket together with its descendants"""
    user_id = await get_current_user_id(request, session)
    await get_owned_project(session, project_id, user_id)

    try:
        deleted = await TicketService(session).delete_ticket(ticket_id, project_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Ticket not found")

    return {"message": "Ticket deleted", "deleted_count": deleted}


@router.post("/{project_id}/generate")
@limit_api_write()
async def generate_project_backlog(
    project_id: int,
    request: Request,
    body: GenerateBacklogRequest,
    user_id: str = Depends(current_user_id),
    generator: ContentGenerator = Depends(get_content_generator),
    session: AsyncSession = Depends(get_db)
):
    """Generate epics, tasks and subtasks from the project's requirements text and append them"""
    project = await get_owned_project(session, project_id, user_id)

    text = (body.text or project.raw_text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="No requirements text to generate from")

    created = await generate_backlog(generator, TicketService(session), project_id, text, body.instruction)
    return {"tickets": [t.to_dict() for t in created], "created_count": len(created)}
