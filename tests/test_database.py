from sqlalchemy import inspect
from sqlalchemy.pool import QueuePool

from upload_service.config import Settings
from upload_service.database import create_db_engine


def test_insert_assigns_increasing_ids(store):
    first = store.insert("a.mp4", "s3://videos/1-a.mp4", 100)
    second = store.insert("b.mp4", "s3://videos/2-b.mp4", 200)

    assert isinstance(first, int)
    assert second > first


def test_list_all_returns_rows_in_insertion_order(store):
    store.insert("a.mp4", "s3://videos/1-a.mp4", 100)
    store.insert("b.mp4", "s3://videos/2-b.mp4", 200)

    rows = store.list_all()

    assert [r.name for r in rows] == ["a.mp4", "b.mp4"]
    assert rows[1].storage_reference == "s3://videos/2-b.mp4"
    assert rows[1].to_dict() == {"id": rows[1].id, "name": "b.mp4", "url": "s3://videos/2-b.mp4", "timestamp": 200}


def test_get_missing_row(store):
    assert store.get(12345) is None


def test_get_existing_row(store):
    video_id = store.insert("a.mp4", "s3://videos/1-a.mp4", 100)

    video = store.get(video_id)

    assert video.name == "a.mp4"
    assert video.timestamp == 100


def test_schema_matches_videos_table(store):
    columns = {c["name"] for c in inspect(store.engine).get_columns("videos")}

    assert columns == {"id", "name", "url", "timestamp"}


def test_create_schema_is_idempotent(store):
    store.create_schema()
    store.ping()


def test_engine_pool_is_bounded():
    settings = Settings(db_user="svc", db_password="p@ss/word", db_host="db", db_name="media")

    engine = create_db_engine(settings)

    assert isinstance(engine.pool, QueuePool)
    assert engine.pool.size() == 10
    assert engine.pool.timeout() == 30
    assert engine.url.drivername == "postgresql+psycopg2"
    assert engine.url.password == "p@ss/word"
    assert engine.url.host == "db"
    assert engine.url.database == "media"
    engine.dispose()
