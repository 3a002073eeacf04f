from datetime import datetime
from io import BytesIO
from pathlib import Path
import os
import sys

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

# Keep the module-level engine off Postgres while tests import the app.
os.environ.setdefault("DATABASE_URL", "sqlite://")
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from crm import main
from crm.account_store import AccountStore
from crm.database import Base, enable_sqlite_savepoints


@pytest.fixture()
def engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)

    @event.listens_for(engine, "connect")
    def register_now(dbapi_conn, _):
        dbapi_conn.create_function("NOW", 0, lambda: datetime.now().isoformat(sep=" "))

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session(engine):
    SessionTesting = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    db = SessionTesting()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def store(session):
    return AccountStore(session)


@pytest.fixture()
def client(engine):
    SessionTesting = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def override_get_db():
        db = SessionTesting()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_get_db
    client = TestClient(main.app)
    try:
        yield client
    finally:
        client.close()
        main.app.dependency_overrides.clear()


def build_workbook_bytes(sheets: dict[str, list[list]]) -> bytes:
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        sheet = wb.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
