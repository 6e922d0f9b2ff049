"""
SQLAlchemy models for video metadata
"""
from typing import Optional

from sqlalchemy import BigInteger, Column, Integer, Text

from upload_service.database import Base


class Video(Base):
    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    # Stored as "url" to stay compatible with existing tables
    storage_reference = Column("url", Text, nullable=False)
    timestamp = Column(BigInteger, nullable=False)

    def to_dict(self, url: Optional[str] = None) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": url if url is not None else self.storage_reference,
            "timestamp": self.timestamp,
        }
