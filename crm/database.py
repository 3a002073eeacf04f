from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from crm.config import settings


class Base(DeclarativeBase):
    pass


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Let pysqlite honour SAVEPOINT by emitting BEGIN ourselves.

    The importer wraps every row in ``Session.begin_nested()``; without this the
    sqlite3 driver commits released savepoints behind SQLAlchemy's back.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_conn, _):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
        enable_sqlite_savepoints(engine)
        return engine
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
