"""Connection persistence: the store contract and its SQLAlchemy implementation."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import delete, func
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.connection import Connection
from services.connectors.errors import StoreError
from services.connectors.types import ConnectionRecord
from services.crypto import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}

_ATTRIBUTE_FOR_COLUMN = {"metadata": "metadata_json"}


class ConnectionStore(Protocol):
    """Keyed on (user_id, platform). Upsert replaces the whole row."""

    async def upsert(self, record: ConnectionRecord) -> ConnectionRecord: ...

    async def update(self, record: ConnectionRecord) -> ConnectionRecord: ...

    async def select_by_user(self, user_id: str) -> List[ConnectionRecord]: ...

    async def select_one(self, user_id: str, platform: str) -> Optional[ConnectionRecord]: ...

    async def delete(self, user_id: str, platform: str) -> None: ...


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlAlchemyConnectionStore:
    """Store over the ``platform_connections`` table; tokens are encrypted at rest."""

    def __init__(self, session: AsyncSession, encryption_key: Optional[str] = None) -> None:
        self.session = session
        self.encryption_key = encryption_key

    def _to_record(self, row: Connection) -> ConnectionRecord:
        try:
            access_token = decrypt_token(row.access_token_encrypted, self.encryption_key)
            refresh_token = decrypt_token(row.refresh_token_encrypted, self.encryption_key)
        except ValueError as exc:
            raise StoreError(str(exc)) from exc
        return ConnectionRecord(
            id=row.id,
            user_id=row.user_id,
            platform=row.platform,
            access_token=access_token,
            refresh_token=refresh_token,
            platform_user_id=row.platform_user_id,
            platform_username=row.platform_username,
            platform_email=row.platform_email,
            display_name=row.display_name,
            token_expires_at=_aware(row.token_expires_at),
            token_status=row.token_status,
            scopes=list(row.scopes or []),
            metadata=dict(row.metadata_json or {}),
            connected_at=_aware(row.connected_at),
            last_synced_at=_aware(row.last_synced_at),
            last_refresh_at=_aware(row.last_refresh_at),
        )

    def _column_values(self, record: ConnectionRecord) -> Dict[str, Any]:
        """Every mutable column, keyed by column name. Upsert and update both write all of them."""
        return {
            "platform_user_id": record.platform_user_id,
            "platform_username": record.platform_username,
            "platform_email": record.platform_email,
            "display_name": record.display_name,
            "access_token_encrypted": encrypt_token(record.access_token, self.encryption_key),
            "refresh_token_encrypted": encrypt_token(record.refresh_token, self.encryption_key),
            "token_expires_at": record.token_expires_at,
            "token_status": record.token_status,
            "scopes": list(record.scopes),
            "metadata": dict(record.metadata),
            "connected_at": record.connected_at or datetime.now(timezone.utc),
            "last_synced_at": record.last_synced_at,
            "last_refresh_at": record.last_refresh_at,
        }

    def _apply(self, row: Connection, record: ConnectionRecord) -> None:
        for column, value in self._column_values(record).items():
            setattr(row, _ATTRIBUTE_FOR_COLUMN.get(column, column), value)

    async def _get_row(self, user_id: str, platform: str) -> Optional[Connection]:
        result = await self.session.execute(
            select(Connection).where(
                Connection.user_id == user_id,
                Connection.platform == platform,
            )
        )
        return result.scalar_one_or_none()

    async def _write(self, record: ConnectionRecord, *, create: bool) -> ConnectionRecord:
        try:
            row = await self._get_row(record.user_id, record.platform)
            if row is None:
                if not create:
                    raise StoreError(f"No {record.platform} connection to update for user {record.user_id}")
                row = Connection(user_id=record.user_id, platform=record.platform)
                self.session.add(row)
            self._apply(row, record)
            await self.session.commit()
            await self.session.refresh(row)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Failed to persist %s connection for user %s", record.platform, record.user_id)
            raise StoreError(f"Failed to persist {record.platform} connection") from exc
        return self._to_record(row)

    async def upsert(self, record: ConnectionRecord) -> ConnectionRecord:
        """Insert or replace the (user_id, platform) row in one statement; last writer wins."""
        insert = _UPSERT_INSERTS.get(self.session.get_bind().dialect.name)
        if insert is None:
            return await self._write(record, create=True)

        table = Connection.__table__
        values = self._column_values(record)
        statement = insert(table).values(
            id=str(uuid.uuid4()),
            user_id=record.user_id,
            platform=record.platform,
            **values,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.platform],
            set_={**values, "updated_at": func.now()},
        )
        try:
            await self.session.execute(statement)
            await self.session.commit()
            row = await self._get_row(record.user_id, record.platform)
            if row is None:
                raise StoreError(f"{record.platform} connection for user {record.user_id} vanished after upsert")
            await self.session.refresh(row)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Failed to upsert %s connection for user %s", record.platform, record.user_id)
            raise StoreError(f"Failed to persist {record.platform} connection") from exc
        return self._to_record(row)

    async def update(self, record: ConnectionRecord) -> ConnectionRecord:
        return await self._write(record, create=False)

    async def select_by_user(self, user_id: str) -> List[ConnectionRecord]:
        try:
            result = await self.session.execute(
                select(Connection)
                .where(Connection.user_id == user_id)
                .order_by(Connection.connected_at.desc())
            )
            rows = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to list connections for user %s", user_id)
            raise StoreError("Failed to list connections") from exc
        return [self._to_record(row) for row in rows]

    async def select_one(self, user_id: str, platform: str) -> Optional[ConnectionRecord]:
        try:
            row = await self._get_row(user_id, platform)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load %s connection for user %s", platform, user_id)
            raise StoreError(f"Failed to load {platform} connection") from exc
        return self._to_record(row) if row is not None else None

    async def delete(self, user_id: str, platform: str) -> None:
        try:
            await self.session.execute(
                delete(Connection).where(
                    Connection.user_id == user_id,
                    Connection.platform == platform,
                )
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Failed to delete %s connection for user %s", platform, user_id)
            raise StoreError(f"Failed to delete {platform} connection") from exc
