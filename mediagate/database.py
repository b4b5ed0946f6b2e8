import logging
import os

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    url_obj = make_url(database_url)
    safe_db_identifier = url_obj.database or "unknown"
    logger.info("Connecting to %s database '%s'", url_obj.get_backend_name(), safe_db_identifier)

    testing = os.getenv("TESTING") == "1"
    if testing and safe_db_identifier and "mediagate_prod" in safe_db_identifier:
        raise RuntimeError("TESTING is enabled but attempting to use a production-like database")

    connect_args = {}
    if url_obj.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
