from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, bindparam, text
from sqlalchemy.orm import Session, SessionTransaction

ACCOUNT_COLUMNS = (
    "first_name",
    "last_name",
    "org_name",
    "kind",
    "nip",
    "regon",
    "pesel",
    "email",
    "phone",
    "website",
    "address",
    "source",
    "status",
    "priority",
    "assigned_to",
    "next_follow_up_at",
)
_SELECT_ACCOUNT = "SELECT id, " + ", ".join(ACCOUNT_COLUMNS) + ", last_contact_at FROM accounts"
_DATETIME_COLUMNS = {"next_follow_up_at", "last_contact_at", "occurred_at"}


def _typed(statement: str, params: dict[str, Any]):
    # Bind datetimes through SQLAlchemy so SQLite and Postgres store them alike.
    clause = text(statement)
    typed = [bindparam(name, type_=DateTime(timezone=True)) for name in params if name in _DATETIME_COLUMNS]
    if "details" in params:
        typed.append(bindparam("details", type_=JSON()))
    return clause.bindparams(*typed) if typed else clause


class AccountStore:
    """Account and interaction persistence used by the workbook importer."""

    def __init__(self, db: Session):
        self.db = db

    def savepoint(self) -> SessionTransaction:
        return self.db.begin_nested()

    def _first_account(self, where: str, params: dict[str, Any]) -> dict[str, Any] | None:
        row = self.db.execute(text(f"{_SELECT_ACCOUNT} {where}"), params).mappings().first()
        return dict(row) if row is not None else None

    def get_account(self, account_id: int) -> dict[str, Any] | None:
        return self._first_account("WHERE id = :account_id", {"account_id": account_id})

    def find_account_by_email(self, email: str) -> dict[str, Any] | None:
        return self._first_account(
            "WHERE LOWER(email) = LOWER(:email) ORDER BY id LIMIT 1",
            {"email": email},
        )

    def find_account_by_org_and_name(self, org_name: str, first_name: str, last_name: str) -> dict[str, Any] | None:
        return self._first_account(
            """
            WHERE org_name = :org_name
              AND first_name = :first_name
              AND COALESCE(last_name, '') = :last_name
            ORDER BY id
            LIMIT 1
            """,
            {"org_name": org_name, "first_name": first_name, "last_name": last_name or ""},
        )

    def find_account_by_email_or_org(self, identifier: str) -> dict[str, Any] | None:
        # Email matches outrank organization matches; ties go to the oldest account.
        return self._first_account(
            """
            WHERE LOWER(email) = LOWER(:identifier) OR org_name = :identifier
            ORDER BY CASE WHEN LOWER(email) = LOWER(:identifier) THEN 0 ELSE 1 END, id
            LIMIT 1
            """,
            {"identifier": identifier},
        )

    def create_account(self, fields: dict[str, Any]) -> dict[str, Any]:
        params = {column: fields.get(column) for column in ACCOUNT_COLUMNS}
        params["last_name"] = params["last_name"] or ""
        columns = ", ".join(ACCOUNT_COLUMNS)
        values = ", ".join(f":{column}" for column in ACCOUNT_COLUMNS)
        account_id = self.db.execute(
            _typed(
                f"""
                INSERT INTO accounts ({columns}, created_at, updated_at)
                VALUES ({values}, NOW(), NOW())
                RETURNING id
                """,
                params,
            ),
            params,
        ).scalar_one()
        return {"id": int(account_id), **params}

    def update_account(self, account_id: int, fields: dict[str, Any]) -> dict[str, Any] | None:
        params = {column: fields[column] for column in ACCOUNT_COLUMNS if column in fields}
        if params:
            assignments = ", ".join(f"{column} = :{column}" for column in params)
            self.db.execute(
                _typed(
                    f"UPDATE accounts SET {assignments}, updated_at = NOW() WHERE id = :account_id",
                    params,
                ),
                {**params, "account_id": account_id},
            )
        return self.get_account(account_id)

    def touch_last_contact(self, account_id: int, when: datetime) -> None:
        params = {"last_contact_at": when}
        self.db.execute(
            _typed(
                """
                UPDATE accounts
                SET last_contact_at = :last_contact_at
                WHERE id = :account_id
                  AND (last_contact_at IS NULL OR last_contact_at < :last_contact_at)
                """,
                params,
            ),
            {**params, "account_id": account_id},
        )

    def create_interaction(self, fields: dict[str, Any]) -> dict[str, Any]:
        params = {
            "account_id": fields["account_id"],
            "kind": fields["kind"],
            "occurred_at": fields["occurred_at"],
            "notes": fields["notes"],
            "author_id": fields["author_id"],
        }
        interaction_id = self.db.execute(
            _typed(
                """
                INSERT INTO interactions (account_id, kind, occurred_at, notes, author_id, created_at)
                VALUES (:account_id, :kind, :occurred_at, :notes, :author_id, NOW())
                RETURNING id
                """,
                params,
            ),
            params,
        ).scalar_one()
        return {"id": int(interaction_id), **params}

    def write_audit_log(self, entry: dict[str, Any]) -> None:
        params = {
            "user_id": entry["user_id"],
            "action": entry["action"],
            "entity_type": entry["entity_type"],
            "entity_id": entry.get("entity_id"),
            "details": entry.get("details"),
        }
        self.db.execute(
            _typed(
                """
                INSERT INTO activity_logs (user_id, action, entity_type, entity_id, details, created_at)
                VALUES (:user_id, :action, :entity_type, :entity_id, :details, NOW())
                """,
                params,
            ),
            params,
        )
