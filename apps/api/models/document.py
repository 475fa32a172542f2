"""Document model backing the account store collections."""

from sqlalchemy import Column, DateTime, JSON, String
from sqlalchemy.dialects.postgresql import JSONB

from database import Base


class Document(Base):
    """One schemaless document, addressed by (collection, id)."""

    __tablename__ = "documents"

    collection = Column(String, primary_key=True)  # users, organizations, influencers
    id = Column(String, primary_key=True)
    # JSONB on Postgres so field merges can run in the database with ``||``.
    data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
