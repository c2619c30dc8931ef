from dotenv import load_dotenv
from sqlalchemy import inspect

load_dotenv()

from donchat.core.config import get_settings  # noqa: E402
from donchat.db.session import Base, create_db_engine, init_db  # noqa: E402
from donchat.utils.logger import configure_logging, get_logger  # noqa: E402

logger = get_logger("init_db")


def create_missing_tables(engine):
    logger.info("Creating missing tables...")
    init_db(engine)
    existing = set(inspect(engine).get_table_names())
    for table_name in Base.metadata.tables:
        if table_name in existing:
            logger.info(f"Table {table_name} ready")
        else:
            logger.error(f"Table {table_name} was not created")


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger.info("Syncing database...")
    create_missing_tables(create_db_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO))
    logger.info("Database sync complete.")
