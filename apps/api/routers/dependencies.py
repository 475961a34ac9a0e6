"""FastAPI dependencies wiring the connection service to the request's DB session."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.connection_store import SqlAlchemyConnectionStore
from services.connections import ConnectionService
from services.connectors.state_store import PendingAuthorizationStore, get_state_store


async def get_connection_service(
    db: AsyncSession = Depends(get_db),
    state_store: PendingAuthorizationStore = Depends(get_state_store),
) -> ConnectionService:
    return ConnectionService(SqlAlchemyConnectionStore(db), state_store)
