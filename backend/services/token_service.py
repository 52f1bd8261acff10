"""
Jira token provider: stored OAuth credentials -> a ready JiraRESTService.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any
import logging

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from db.integration_models import ExternalIntegration, IntegrationProvider, IntegrationStatus
from services.encryption import get_encryption_service, TokenDecryptionError
from services.jira_service import JiraOAuthService, JiraRESTService, AuthenticationError

logger = logging.getLogger(__name__)

# Refresh tokens this long before they actually expire
REFRESH_BUFFER = timedelta(minutes=5)


class JiraNotConnectedError(Exception):
    """The user has no usable Jira connection"""
    pass


class JiraTokenService:
    """Reads, refreshes and stores a user's Jira OAuth tokens"""

    def __init__(self, session: AsyncSession, oauth: Optional[JiraOAuthService] = None):
        self.session = session
        self.oauth = oauth or JiraOAuthService()

    async def get_user_integration(self, user_id: str) -> Optional[ExternalIntegration]:
        result = await self.session.execute(
            select(ExternalIntegration).where(
                and_(
                    ExternalIntegration.user_id == user_id,
                    ExternalIntegration.provider == IntegrationProvider.JIRA.value
                )
            )
        )
        return result.scalar_one_or_none()

    async def is_connected(self, user_id: str) -> bool:
        integration = await self.get_user_integration(user_id)
        return bool(
            integration
            and integration.status == IntegrationStatus.CONNECTED.value
            and integration.access_token_encrypted
        )

    async def save_tokens(
        self,
        user_id: str,
        tokens: Dict[str, Any],
        site: Dict[str, Any]
    ) -> ExternalIntegration:
        """Store freshly exchanged tokens and the chosen site, creating the integration if needed"""
        encryption = get_encryption_service()
        integration = await self.get_user_integration(user_id)
        if integration is None:
            integration = ExternalIntegration(user_id=user_id, provider=IntegrationProvider.JIRA.value)
            self.session.add(integration)

        integration.status = IntegrationStatus.CONNECTED.value
        integration.access_token_encrypted = encryption.encrypt(tokens["access_token"])
        if tokens.get("refresh_token"):
            integration.refresh_token_encrypted = encryption.encrypt(tokens["refresh_token"])
        integration.token_expires_at = datetime.now(timezone.utc) + timedelta(
            seconds=tokens.get("expires_in", 3600)
        )
        integration.external_account_id = site.get("id")
        integration.external_account_name = site.get("name")
        integration.site_url = site.get("url")
        integration.scopes = {"scope": tokens.get("scope"), "resource_scopes": site.get("scopes", [])}

        await self.session.commit()
        await self.session.refresh(integration)
        return integration

    async def disconnect(self, user_id: str) -> bool:
        integration = await self.get_user_integration(user_id)
        if not integration:
            return False

        integration.status = IntegrationStatus.DISCONNECTED.value
        integration.access_token_encrypted = None
        integration.refresh_token_encrypted = None
        integration.token_expires_at = None
        await self.session.commit()
        return True

    async def get_valid_access_token(self, user_id: str) -> str:
        """
        Access token for the user, refreshed first when it expires within
        REFRESH_BUFFER. A failed refresh marks the integration as errored and
        raises AuthenticationError.
        """
        integration = await self.get_user_integration(user_id)

        if not integration or integration.status != IntegrationStatus.CONNECTED.value:
            raise JiraNotConnectedError("Jira integration not connected")

        if not integration.access_token_encrypted:
            raise JiraNotConnectedError("Jira tokens not found")

        encryption = get_encryption_service()

        expires_at = integration.token_expires_at
        if expires_at and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        if expires_at is None or expires_at - REFRESH_BUFFER > datetime.now(timezone.utc):
            try:
                return encryption.decrypt(integration.access_token_encrypted)
            except TokenDecryptionError as e:
                raise AuthenticationError("Stored Jira token is unreadable. Please reconnect.", status_code=401) from e

        if not integration.refresh_token_encrypted:
            raise AuthenticationError("Jira token expired. Please reconnect.", status_code=401)

        try:
            refresh_token = encryption.decrypt(integration.refresh_token_encrypted)
            new_tokens = await self.oauth.refresh_access_token(refresh_token)
        except (AuthenticationError, TokenDecryptionError) as e:
            logger.error(f"Jira token refresh failed for user {user_id}: {e}")
            integration.status = IntegrationStatus.ERROR.value
            await self.session.commit()
            raise AuthenticationError("Jira token expired. Please reconnect.", status_code=401) from e

        integration.access_token_encrypted = encryption.encrypt(new_tokens["access_token"])
        if new_tokens.get("refresh_token"):
            integration.refresh_token_encrypted = encryption.encrypt(new_tokens["refresh_token"])
        integration.token_expires_at = datetime.now(timezone.utc) + timedelta(
            seconds=new_tokens.get("expires_in", 3600)
        )
        await self.session.commit()
        logger.info(f"Refreshed Jira access token for user {user_id}")

        return new_tokens["access_token"]

    async def get_jira_service(self, user_id: str) -> JiraRESTService:
        """Authenticated Jira REST client for the user's connected site"""
        access_token = await self.get_valid_access_token(user_id)
        integration = await self.get_user_integration(user_id)
        if not integration.external_account_id:
            raise JiraNotConnectedError("Jira cloud ID not found")
        return JiraRESTService(access_token, integration.external_account_id)
