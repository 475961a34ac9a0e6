"""Connection model for OAuth platform links."""

from sqlalchemy import Column, String, DateTime, JSON, Text, UniqueConstraint
from sqlalchemy.sql import func
import uuid

from database import Base


class Connection(Base):
    """One user's link to one platform (instagram, youtube, twitter, ...)."""

    __tablename__ = "platform_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_platform_connections_user_platform"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    platform = Column(String, nullable=False)
    platform_user_id = Column(String, nullable=True, index=True)
    platform_username = Column(String, nullable=True)
    platform_email = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    token_status = Column(String, nullable=False, default="active")  # active, expired, revoked, error
    scopes = Column(JSON, nullable=False, default=list)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    connected_at = Column(DateTime(timezone=True), nullable=False)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_refresh_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
