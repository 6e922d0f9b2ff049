"""
Database engine and the video metadata store.
Connection pooling is bounded by the DB_* pool settings.
"""
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from upload_service.config import Settings

if TYPE_CHECKING:
    from upload_service.models import Video

Base = declarative_base()


def create_db_engine(settings: Settings) -> Engine:
    """Create SQLAlchemy engine with connection pooling"""
    max_idle = max(settings.db_max_idle_conns, 1)
    engine = create_engine(
        settings.sqlalchemy_url,
        poolclass=QueuePool,
        pool_size=max_idle,
        max_overflow=max(settings.db_max_open_conns - max_idle, 0),
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_conn_max_lifetime,
        pool_pre_ping=True,
        echo=False,
    )
    return engine


class VideoStore:
    """Persistence for Video rows; one short-lived session per call"""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine,
                                         expire_on_commit=False)

    def create_schema(self) -> None:
        # models registers its tables on Base.metadata
        from upload_service import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def insert(self, name: str, storage_reference: str, timestamp: int) -> int:
        from upload_service.models import Video

        session = self.SessionLocal()
        try:
            video = Video(name=name, storage_reference=storage_reference, timestamp=timestamp)
            session.add(video)
            session.commit()
            return video.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list_all(self) -> List["Video"]:
        from upload_service.models import Video

        session = self.SessionLocal()
        try:
            return session.query(Video).order_by(Video.id).all()
        finally:
            session.close()

    def get(self, video_id: int) -> Optional["Video"]:
        from upload_service.models import Video

        session = self.SessionLocal()
        try:
            return session.get(Video, video_id)
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
