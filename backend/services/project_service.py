"""
Project Service
Handles project CRUD; tickets go with their project on delete
"""
from typing import Optional, List, Any

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Project

UPDATABLE_FIELDS = {"name", "description", "jira_project_key", "doc_url", "raw_text"}


class ProjectService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_project(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        jira_project_key: Optional[str] = None,
        doc_url: Optional[str] = None,
        raw_text: Optional[str] = None
    ) -> Project:
        project = Project(
            user_id=user_id,
            name=name,
            description=description,
            jira_project_key=jira_project_key,
            doc_url=doc_url,
            raw_text=raw_text
        )
        self.session.add(project)
        await self.session.commit()
        await self.session.refresh(project)
        return project

    async def get_project(self, project_id: int, user_id: str) -> Optional[Project]:
        """Project by id, only if it belongs to user_id"""
        result = await self.session.execute(
            select(Project).where(and_(Project.id == project_id, Project.user_id == user_id))
        )
        return result.scalar_one_or_none()

    async def list_projects(self, user_id: str) -> List[Project]:
        result = await self.session.execute(
            select(Project)
            .where(Project.user_id == user_id)
            .order_by(Project.created_at.desc())
        )
        return list(result.scalars().all())

    async def update_project(self, project_id: int, user_id: str, **fields: Any) -> Optional[Project]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update project fields: {', '.join(sorted(unknown))}")

        project = await self.get_project(project_id, user_id)
        if not project:
            return None

        for name, value in fields.items():
            setattr(project, name, value)
        await self.session.commit()
        await self.session.refresh(project)
        return project

    async def delete_project(self, project_id: int, user_id: str) -> bool:
        project = await self.get_project(project_id, user_id)
        if not project:
            return False

        await self.session.delete(project)
        await self.session.commit()
        return True
