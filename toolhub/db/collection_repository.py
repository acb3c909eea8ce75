"""
CollectionRepository / AgentRepository — the owning entities of executor configs.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.db.models import AgentModel, CollectionModel, CollectionToolModel, ToolModel
from toolhub.executors.config import ExecutorConfig, ExecutorType, parse_executor_config

logger = logging.getLogger(__name__)


def _executor_columns(config: Optional[ExecutorConfig]) -> Dict[str, Any]:
    if config is None:
        return {"executor_type": None, "executor_config": None}
    if config.type == ExecutorType.DEFAULT.value:
        return {"executor_type": ExecutorType.DEFAULT.value, "executor_config": None}
    return {
        "executor_type": ExecutorType.CUSTOM_URL.value,
        "executor_config": {"url": config.url, "apiKey": config.api_key},
    }


class CollectionRepository:

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        username: str,
        slug: str,
        name: str,
        description: Optional[str] = None,
        is_public: bool = False,
        executor: Optional[ExecutorConfig] = None,
    ) -> CollectionModel:
        row = CollectionModel(
            username=username, slug=slug, name=name, description=description,
            is_public=is_public, **_executor_columns(executor),
        )
        self._session.add(row)
        await self._session.flush()
        logger.info(f"Created collection {username}/{slug}")
        return row

    async def get(self, collection_id: str) -> Optional[CollectionModel]:
        result = await self._session.execute(
            select(CollectionModel).where(CollectionModel.id == collection_id)
        )
        return result.scalar_one_or_none()

    async def get_public(self, username: str, slug: str) -> Optional[CollectionModel]:
        result = await self._session.execute(
            select(CollectionModel).where(
                CollectionModel.username == username,
                CollectionModel.slug == slug,
                CollectionModel.is_public.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def add_tool(self, collection_id: str, tool_id: str, position: Optional[int] = None) -> CollectionToolModel:
        if position is None:
            position = len(await self.list_tools(collection_id))
        link = CollectionToolModel(collection_id=collection_id, tool_id=tool_id, position=position)
        self._session.add(link)
        await self._session.flush()
        return link

    async def list_tools(self, collection_id: str) -> List[ToolModel]:
        result = await self._session.execute(
            select(ToolModel)
            .join(CollectionToolModel, CollectionToolModel.tool_id == ToolModel.id)
            .where(CollectionToolModel.collection_id == collection_id)
            .order_by(CollectionToolModel.position)
        )
        return list(result.scalars().all())

    @staticmethod
    def executor_config(row: CollectionModel) -> Optional[ExecutorConfig]:
        return parse_executor_config(row.executor_type, row.executor_config)


class AgentRepository:

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, name: str, executor: Optional[ExecutorConfig] = None) -> AgentModel:
        row = AgentModel(name=name, **_executor_columns(executor))
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, agent_id: str) -> Optional[AgentModel]:
        result = await self._session.execute(select(AgentModel).where(AgentModel.id == agent_id))
        return result.scalar_one_or_none()

    @staticmethod
    def executor_config(row: AgentModel) -> Optional[ExecutorConfig]:
        return parse_executor_config(row.executor_type, row.executor_config)
