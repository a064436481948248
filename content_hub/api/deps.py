from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_hub.core.config import Settings, get_settings
from content_hub.core.jobs import QueueClient
from content_hub.db.repository import AssetRepository
from content_hub.services.dispatch import JobDispatcher


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_queue_client(request: Request) -> QueueClient:
    queue_client: QueueClient = request.app.state.queue_client
    return queue_client


def get_app_settings() -> Settings:
    return get_settings()


def get_repository(session: AsyncSession = Depends(get_session)) -> AssetRepository:
    return AssetRepository(session)


def get_dispatcher(
    session: AsyncSession = Depends(get_session),
    queue_client: QueueClient = Depends(get_queue_client),
) -> JobDispatcher:
    return JobDispatcher(queue_client, session)


RepositoryDependency = Annotated[AssetRepository, Depends(get_repository)]
DispatcherDependency = Annotated[JobDispatcher, Depends(get_dispatcher)]
QueueDependency = Annotated[QueueClient, Depends(get_queue_client)]
SettingsDependency = Annotated[Settings, Depends(get_app_settings)]


__all__ = [
    "get_session",
    "get_queue_client",
    "get_app_settings",
    "get_repository",
    "get_dispatcher",
    "RepositoryDependency",
    "DispatcherDependency",
    "QueueDependency",
    "SettingsDependency",
]
