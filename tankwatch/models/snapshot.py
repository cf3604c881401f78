"""
Snapshot Model
One row per persisted entity (events, timeline, readings) for the SQLite backend
"""
from sqlalchemy import Column, Float, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Snapshot(Base):
    """
    Full JSON snapshot of a persisted entity.
    Rows are replaced whole so readers never observe a partial write.
    """

    __tablename__ = "snapshots"

    name = Column(String(64), primary_key=True)
    payload = Column(Text, nullable=False)  # JSON document
    updated_at = Column(Float, nullable=False)  # epoch seconds

    def __repr__(self):
        return f"<Snapshot(name={self.name}, updated_at={self.updated_at})>"
