from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from conftest import build_workbook_bytes
from crm import import_service
from crm.account_store import AccountStore

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ACCOUNT_SHEET = [
    ["Imię", "Nazwisko", "Email"],
    ["Jan", "Kowalski", "jan@x.pl"],
]


def upload(client, content, *, filename="klienci.xlsx", user_id="user-1", import_mode="apply"):
    return client.post(
        "/import/workbook",
        files={"workbook_file": (filename, content, XLSX_MIME)},
        data={"user_id": user_id, "import_mode": import_mode},
    )


def count_rows(engine, table):
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()


def test_import_creates_account_from_workbook(client, engine):
    response = upload(client, build_workbook_bytes({"Klienci": ACCOUNT_SHEET}))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["accounts_created"] == 1
    assert body["interactions_created"] == 0
    assert body["errors"] == []
    assert body["import_mode"] == "apply"
    assert body["message"] == "Import finished. Created 1 accounts and 0 interactions."
    assert 'Found 1 rows in sheet "Klienci".' in body["warnings"]
    assert count_rows(engine, "accounts") == 1


def test_reimport_updates_instead_of_duplicating(client, engine):
    content = build_workbook_bytes({"Klienci": ACCOUNT_SHEET})
    upload(client, content)

    response = upload(client, content)

    body = response.json()
    assert body["accounts_created"] == 0
    assert body["accounts_updated"] == 1
    assert [w for w in body["warnings"] if "jan@x.pl" in w] == ["Account jan@x.pl already existed, data updated."]
    assert count_rows(engine, "accounts") == 1


def test_interaction_for_unknown_account_is_reported(client, engine):
    content = build_workbook_bytes(
        {
            "Klienci": ACCOUNT_SHEET,
            "Kontakty": [
                ["Klient Email", "Typ", "Notatka", "Data"],
                ["ghost@nowhere.pl", "Telefon", "Nikt nie odebrał", 45000],
            ],
        }
    )

    response = upload(client, content)

    body = response.json()
    assert response.status_code == 200
    assert body["accounts_created"] == 1
    assert body["interactions_created"] == 0
    assert body["errors"] == ["No account found for interaction: ghost@nowhere.pl"]
    assert count_rows(engine, "interactions") == 0


def test_interactions_sheet_attaches_to_imported_account(client):
    content = build_workbook_bytes(
        {
            "Klienci": ACCOUNT_SHEET,
            "Kontakty": [
                ["Klient Email", "Typ", "Notatka", "Data"],
                ["jan@x.pl", "Spotkanie", "Prezentacja oferty", 45000],
            ],
        }
    )

    body = upload(client, content).json()
    assert body["interactions_created"] == 1

    accounts = client.get("/api/accounts").json()["items"]
    assert len(accounts) == 1
    assert accounts[0]["interaction_count"] == 1
    assert accounts[0]["last_contact_at"].startswith("2023-03-15")

    items = client.get(f"/api/accounts/{accounts[0]['id']}/interactions").json()["items"]
    assert len(items) == 1
    assert items[0]["kind"] == "MEETING"
    assert items[0]["notes"] == "Prezentacja oferty"
    assert items[0]["author_id"] == "user-1"
    assert items[0]["occurred_at"].startswith("2023-03-15")


def test_contacts_with_client_name_column_match_by_email(client, engine):
    content = build_workbook_bytes(
        {
            "Klienci": ACCOUNT_SHEET,
            "Kontakty": [
                ["Klient", "Email", "Typ", "Notatka"],
                ["Jan Kowalski", "jan@x.pl", "Telefon", "Oddzwonić"],
            ],
        }
    )

    body = upload(client, content).json()

    assert body["errors"] == []
    assert body["interactions_created"] == 1
    assert count_rows(engine, "interactions") == 1


def test_preview_mode_reports_without_saving(client, engine):
    response = upload(client, build_workbook_bytes({"Klienci": ACCOUNT_SHEET}), import_mode="preview")

    assert response.status_code == 200
    body = response.json()
    assert body["accounts_created"] == 1
    assert body["import_mode"] == "preview"
    assert body["message"].startswith("Preview only, nothing saved.")
    assert count_rows(engine, "accounts") == 0
    assert count_rows(engine, "activity_logs") == 0


def test_invalid_import_mode_is_rejected(client):
    response = upload(client, build_workbook_bytes({"Klienci": ACCOUNT_SHEET}), import_mode="dry-run")
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid import mode. Use preview or apply."


def test_missing_user_is_rejected(client, engine):
    response = upload(client, build_workbook_bytes({"Klienci": ACCOUNT_SHEET}), user_id="  ")
    assert response.status_code == 400
    assert response.json()["detail"] == "user_id is required"
    assert count_rows(engine, "accounts") == 0


def test_unsupported_extension_is_rejected(client):
    response = upload(client, b"Imie,Email\nJan,jan@x.pl\n", filename="klienci.csv")
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Unsupported file type.")


def test_empty_upload_is_rejected(client):
    response = upload(client, b"")
    assert response.status_code == 400
    assert response.json()["detail"] == "Uploaded workbook is empty"


def test_unreadable_workbook_is_rejected(client, engine):
    response = upload(client, b"this is not a zip archive")
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["message"] == "Workbook could not be read"
    assert detail["success"] is False
    assert detail["accounts_created"] == 0
    assert detail["interactions_created"] == 0
    assert len(detail["errors"]) == 1
    assert detail["errors"][0].startswith("Could not read workbook:")
    assert detail["warnings"] == []
    assert count_rows(engine, "activity_logs") == 0


class FlakyConnectionStore(AccountStore):
    lookups = 0

    def find_account_by_email(self, email):
        FlakyConnectionStore.lookups += 1
        if FlakyConnectionStore.lookups == 2:
            raise OperationalError("SELECT", {}, Exception("server closed the connection"))
        return super().find_account_by_email(email)


def test_connection_failure_returns_500_with_partial_result(client, engine, monkeypatch):
    monkeypatch.setattr(FlakyConnectionStore, "lookups", 0)
    monkeypatch.setattr(import_service, "AccountStore", FlakyConnectionStore)
    content = build_workbook_bytes(
        {
            "Klienci": [
                ["Imię", "Nazwisko", "Email"],
                ["Jan", "Kowalski", "jan@x.pl"],
                ["Anna", "Nowak", "anna@x.pl"],
            ]
        }
    )

    response = upload(client, content)

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["accounts_created"] == 1
    assert body["interactions_created"] == 0
    assert len(body["errors"]) == 1
    assert body["errors"][0].startswith("Critical error during import:")
    assert 'Found 2 rows in sheet "Klienci".' in body["warnings"]
    assert count_rows(engine, "activity_logs") == 0


def test_interactions_for_unknown_account_return_404(client):
    response = client.get("/api/accounts/999/interactions")
    assert response.status_code == 404
    assert response.json()["detail"] == "Account not found"
