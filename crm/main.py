import logging
from contextlib import asynccontextmanager
from datetime import date, datetime

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm import models  # noqa: F401  (registers tables on Base.metadata)
from crm.config import settings
from crm.database import Base, SessionLocal, engine
from crm.import_service import import_crm_workbook, normalize_import_mode

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="CRM Import", lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def json_safe(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [json_safe(v) for v in value]
    return value


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True}


@app.post("/import/workbook")
async def import_workbook(
    workbook_file: UploadFile = File(...),
    user_id: str = Form(""),
    import_mode: str = Form("apply"),
    db: Session = Depends(get_db),
):
    mode = normalize_import_mode(import_mode)
    acting_user = user_id.strip()
    if not acting_user:
        raise HTTPException(status_code=400, detail="user_id is required")

    filename = workbook_file.filename or "workbook.xlsx"
    payload = await workbook_file.read()
    try:
        result = import_crm_workbook(db, payload, filename, acting_user)
        if mode == "preview":
            db.rollback()
        else:
            db.commit()
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error during workbook import")
        raise HTTPException(status_code=500, detail="Unexpected import database error.") from exc

    body = result.as_dict()
    body.update(
        {
            "filename": filename,
            "import_mode": mode,
            "message": (
                f"Import finished. Created {result.accounts_created} accounts "
                f"and {result.interactions_created} interactions."
            ),
        }
    )
    if mode == "preview":
        body["message"] = f"Preview only, nothing saved. {body['message']}"
    return JSONResponse(body, status_code=200 if result.success else 500)


@app.get("/api/accounts")
def list_accounts(db: Session = Depends(get_db)):
    rows = db.execute(
        text(
            """
            SELECT a.id, a.first_name, a.last_name, a.org_name, a.kind, a.email, a.phone,
                   a.status, a.priority, a.assigned_to, a.last_contact_at,
                   COUNT(i.id) AS interaction_count
            FROM accounts a
            LEFT JOIN interactions i ON i.account_id = a.id
            GROUP BY a.id
            ORDER BY a.id
            LIMIT 1000
            """
        )
    ).mappings().all()
    return {"items": [json_safe(dict(r)) for r in rows]}


@app.get("/api/accounts/{account_id}/interactions")
def list_account_interactions(account_id: int, db: Session = Depends(get_db)):
    exists = db.execute(
        text("SELECT 1 FROM accounts WHERE id = :account_id"),
        {"account_id": account_id},
    ).scalar()
    if not exists:
        raise HTTPException(status_code=404, detail="Account not found")

    rows = db.execute(
        text(
            """
            SELECT id, kind, occurred_at, notes, author_id
            FROM interactions
            WHERE account_id = :account_id
            ORDER BY occurred_at, id
            """
        ),
        {"account_id": account_id},
    ).mappings().all()
    return {"items": [json_safe(dict(r)) for r in rows]}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.app_host, port=settings.app_port)
