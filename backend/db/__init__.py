from .database import get_db, engine, AsyncSessionLocal, init_db
from .models import (
    Base, User, UserSession, Project, Ticket, TicketType,
    TICKET_LEVEL, PARENT_TYPE
)
from .integration_models import (
    ExternalIntegration, SyncRun,
    IntegrationProvider, IntegrationStatus, SyncRunKind, SyncRunStatus
)
