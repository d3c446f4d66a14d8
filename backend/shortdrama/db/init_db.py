import datetime
import logging
from typing import Optional

from sqlalchemy import text, inspect, or_
from shortdrama.core.config import settings
from shortdrama.db.session import engine, SessionLocal
from shortdrama.models.all_models import Base, Shot, ShotStatus, utcnow_iso

logger = logging.getLogger(__name__)

# Columns added after the first release, per table: (column_name, sql_type_and_default)
COLUMN_MIGRATIONS = {
    "shots": [
        ("camera_movement", "VARCHAR"),
        ("character_ids", "JSON"),
        ("lip_sync_video_path", "VARCHAR"),
        ("generation_kind", "VARCHAR"),
        ("generation_error", "TEXT"),
        ("generation_updated_at", "VARCHAR"),
    ],
    "episodes": [
        ("dialogue_text", "TEXT"),
    ],
    "projects": [
        ("settings", "JSON"),
    ],
}


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


def check_and_migrate_tables() -> None:
    """Add columns that older databases are missing.

    Tables created by ``create_all`` already carry every column, so this only
    does work against a database file from an earlier schema.
    """
    inspector = inspect(engine)
    is_postgres = engine.dialect.name == "postgresql"

    for table_name, columns in COLUMN_MIGRATIONS.items():
        if not inspector.has_table(table_name):
            continue
        existing_columns = {c["name"] for c in inspector.get_columns(table_name)}
        missing = [(name, col_type) for (name, col_type) in columns if name not in existing_columns]
        if not missing:
            continue

        with engine.begin() as conn:
            for col_name, col_type in missing:
                if is_postgres:
                    conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN IF NOT EXISTS {col_name} {col_type}"))
                else:
                    conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {col_name} {col_type}"))
                logger.info(f"Ensured {table_name}.{col_name} exists")


def recover_interrupted_generations(stale_after_seconds: Optional[int] = None) -> int:
    """Fail shots left in_progress by a process that died mid-generation.

    Only attempts whose ``generation_updated_at`` is older than
    ``GENERATION_STALE_AFTER_SECONDS`` (or missing) are swept, so a worker
    starting next to a live one leaves its in-flight shots alone.
    """
    if stale_after_seconds is None:
        stale_after_seconds = settings.GENERATION_STALE_AFTER_SECONDS
    cutoff = (datetime.datetime.utcnow() - datetime.timedelta(seconds=stale_after_seconds)).isoformat()

    with SessionLocal() as session:
        count = (
            session.query(Shot)
            .filter(
                Shot.status == ShotStatus.IN_PROGRESS.value,
                or_(Shot.generation_updated_at.is_(None), Shot.generation_updated_at < cutoff),
            )
            .update(
                {
                    Shot.status: ShotStatus.FAILED.value,
                    Shot.generation_error: "Generation interrupted by server restart",
                    Shot.generation_updated_at: utcnow_iso(),
                },
                synchronize_session=False,
            )
        )
        session.commit()
    if count:
        logger.warning(f"Marked {count} interrupted shot generation(s) as failed")
    return count


def init_db() -> None:
    create_tables()
    check_and_migrate_tables()
    recover_interrupted_generations()
