"""
Backlog generation boundary.

Turning a requirements document into epics, tasks and subtasks is done by an
external generator (an LLM or anything else). This module only fixes the
shape of what it hands back and how that tree is stored.
"""
import logging
from typing import List, Optional, Protocol, runtime_checkable

from fastapi import HTTPException, Request

from services.ticket_service import GeneratedNode, TicketService
from db.models import Ticket

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentGenerator(Protocol):
    async def generate(self, text: str, instruction: Optional[str] = None) -> List[GeneratedNode]:
        """Top-level nodes are epics; their children tasks; grandchildren subtasks"""
        ...


async def generate_backlog(
    generator: ContentGenerator,
    tickets: TicketService,
    project_id: int,
    text: str,
    instruction: Optional[str] = None
) -> List[Ticket]:
    """Run the generator over a document and append the result to the project's backlog"""
    epics = await generator.generate(text, instruction)
    created = await tickets.insert_tree(project_id, epics)
    logger.info(f"Generated {len(created)} tickets ({len(epics)} epics) for project {project_id}")
    return created


def get_content_generator(request: Request) -> ContentGenerator:
    """FastAPI dependency: the generator installed on app.state at startup"""
    generator = getattr(request.app.state, "content_generator", None)
    if generator is None:
        raise HTTPException(status_code=503, detail="Backlog generation is not configured")
    return generator
