"""FastAPI dependency injection — store and template snapshot."""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pipetrak.db import get_db
from pipetrak.services.component_store import ComponentStore
from pipetrak.services.milestone_weights import TemplateSnapshot


async def get_store(db: AsyncSession = Depends(get_db)) -> ComponentStore:
    return ComponentStore(db)


async def get_snapshot(store: ComponentStore = Depends(get_store)) -> TemplateSnapshot:
    """Templates are read once per request and stay fixed for its duration."""
    return await store.load_snapshot()
