"""
Integration Routes - Main Router
Combines provider-specific routes into a single router.
"""
from fastapi import APIRouter, Request, Depends
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from db import get_db
from db.integration_models import IntegrationProvider, IntegrationStatus
from routes.auth import get_current_user_id
from services.jira_service import JiraOAuthService
from services.token_service import JiraTokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/status")
async def get_integrations_status(
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """Jira connection status for the current user"""
    user_id = await get_current_user_id(request, session)

    tokens = JiraTokenService(session)
    integration = await tokens.get_user_integration(user_id)
    configured = JiraOAuthService().is_configured()

    if not integration:
        return {
            IntegrationProvider.JIRA.value: {
                "status": IntegrationStatus.DISCONNECTED.value,
                "connected": False,
                "configured": configured,
                "account_name": None,
                "site_url": None,
                "connected_at": None
            }
        }

    return {
        IntegrationProvider.JIRA.value: {
            "status": integration.status,
            "connected": await tokens.is_connected(user_id),
            "configured": configured,
            "account_name": integration.external_account_name,
            "site_url": integration.site_url,
            "connected_at": integration.created_at
        }
    }


from .jira import router as jira_router  # noqa: E402

router.include_router(jira_router)
