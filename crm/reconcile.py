"""Two-phase reconciliation of parsed workbook rows against stored accounts.

Phase one upserts accounts, matching on email and then on organization plus
name, and records which account each natural key landed on. Phase two attaches
interactions to those accounts, falling back to a direct lookup for keys the
first phase never saw. Every row runs in its own savepoint so one bad row is
reported and rolled back without touching the rest of the batch.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.exc import InterfaceError, OperationalError

from crm.account_store import AccountStore
from crm.import_result import ImportResult
from crm.models import AccountKind, AccountStatus
from crm.workbook_import import CandidateAccount, CandidateInteraction

logger = logging.getLogger(__name__)

# Connection-level failures abort the run instead of being pinned on a single row.
CONNECTION_ERRORS = (OperationalError, InterfaceError)

MERGE_FIELDS = (
    "first_name",
    "last_name",
    "org_name",
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
    "next_follow_up_at",
)


class ImportCancelled(Exception):
    pass


def account_identifier(candidate: CandidateAccount) -> str:
    return candidate.email or candidate.org_name or f"{candidate.first_name} {candidate.last_name}".strip()


def _value(value: Any) -> Any:
    return getattr(value, "value", value)


def _candidate_fields(candidate: CandidateAccount) -> dict[str, Any]:
    return {name: _value(getattr(candidate, name)) for name in MERGE_FIELDS}


def merge_account_fields(existing: dict[str, Any], candidate: CandidateAccount) -> dict[str, Any]:
    """Fields to write onto ``existing``: only what the candidate actually carries.

    ``status`` is always carried, since the parser defaults it to ``NEW_LEAD``
    when the sheet has no status column. Re-importing such a sheet resets the
    stored status.
    """
    merged = {name: value for name, value in _candidate_fields(candidate).items() if value not in (None, "")}
    org_name = merged.get("org_name") or existing.get("org_name")
    merged["kind"] = (AccountKind.ORGANIZATION if org_name else AccountKind.PERSON).value
    return merged


def _find_existing(store: AccountStore, candidate: CandidateAccount) -> dict[str, Any] | None:
    existing = None
    if candidate.email:
        existing = store.find_account_by_email(candidate.email)
    if existing is None and candidate.org_name:
        existing = store.find_account_by_org_and_name(candidate.org_name, candidate.first_name, candidate.last_name)
    return existing


def _upsert_account(store: AccountStore, candidate: CandidateAccount, user_id: str) -> tuple[int, bool]:
    existing = _find_existing(store, candidate)
    if existing is not None:
        store.update_account(existing["id"], merge_account_fields(existing, candidate))
        return int(existing["id"]), False

    fields = _candidate_fields(candidate)
    fields["kind"] = candidate.kind.value
    fields["status"] = fields["status"] or AccountStatus.NEW_LEAD.value
    fields["assigned_to"] = user_id
    created = store.create_account(fields)
    return int(created["id"]), True


def _resolve_account_id(store: AccountStore, identifier: str, identifiers: dict[str, int]) -> int | None:
    account_id = identifiers.get(identifier)
    if account_id is not None:
        return account_id
    account = store.find_account_by_email_or_org(identifier)
    if account is None:
        return None
    identifiers[identifier] = int(account["id"])
    return identifiers[identifier]


def _check_cancelled(should_cancel: Callable[[], bool] | None, done: int, total: int, phase: str) -> None:
    if should_cancel is not None and should_cancel():
        raise ImportCancelled(f"Import cancelled during {phase} after {done} of {total} rows.")


def _import_accounts(store, accounts, user_id, identifiers, result, should_cancel) -> None:
    for index, candidate in enumerate(accounts):
        _check_cancelled(should_cancel, index, len(accounts), "accounts")
        identifier = account_identifier(candidate)
        try:
            with store.savepoint():
                account_id, created = _upsert_account(store, candidate, user_id)
        except CONNECTION_ERRORS:
            raise
        except Exception as exc:
            name = f"{candidate.first_name} {candidate.last_name}".strip()
            result.errors.append(f"Error importing account {name}: {exc}")
            logger.warning("Account row %s (%s) failed: %s", index + 1, name, exc)
            continue

        identifiers[identifier] = account_id
        if created:
            result.accounts_created += 1
        else:
            result.accounts_updated += 1
            result.warnings.append(f"Account {identifier} already existed, data updated.")


def _import_interactions(store, interactions, user_id, identifiers, result, should_cancel) -> None:
    for index, candidate in enumerate(interactions):
        _check_cancelled(should_cancel, index, len(interactions), "interactions")
        identifier = candidate.account_identifier
        try:
            with store.savepoint():
                account_id = _resolve_account_id(store, identifier, identifiers)
                if account_id is None:
                    result.errors.append(f"No account found for interaction: {identifier}")
                    continue
                store.create_interaction(
                    {
                        "account_id": account_id,
                        "kind": _value(candidate.kind),
                        "occurred_at": candidate.occurred_at,
                        "notes": candidate.notes,
                        "author_id": user_id,
                    }
                )
                store.touch_last_contact(account_id, candidate.occurred_at)
        except CONNECTION_ERRORS:
            raise
        except Exception as exc:
            result.errors.append(f"Error importing interaction for {identifier}: {exc}")
            logger.warning("Interaction row %s (%s) failed: %s", index + 1, identifier, exc)
            continue

        result.interactions_created += 1


def _write_audit_log(store: AccountStore, user_id: str, result: ImportResult, *, cancelled: bool) -> None:
    details = {
        "accounts_created": result.accounts_created,
        "accounts_updated": result.accounts_updated,
        "interactions_created": result.interactions_created,
        "errors": len(result.errors),
        "warnings": len(result.warnings),
    }
    if cancelled:
        details["cancelled"] = True
    try:
        with store.savepoint():
            store.write_audit_log(
                {
                    "user_id": user_id,
                    "action": "BULK_IMPORT",
                    "entity_type": "Import",
                    "details": details,
                }
            )
    except Exception as exc:
        logger.exception("Could not write import activity log")
        result.warnings.append(f"Activity log could not be written: {exc}")


def import_candidates(
    store: AccountStore,
    accounts: list[CandidateAccount],
    interactions: list[CandidateInteraction],
    user_id: str,
    *,
    should_cancel: Callable[[], bool] | None = None,
) -> ImportResult:
    result = ImportResult()
    # Natural key -> account id, scoped to this run only.
    identifiers: dict[str, int] = {}
    cancelled = False

    try:
        _import_accounts(store, accounts, user_id, identifiers, result, should_cancel)
        _import_interactions(store, interactions, user_id, identifiers, result, should_cancel)
    except ImportCancelled as exc:
        cancelled = True
        result.warnings.append(str(exc))
        logger.info("%s", exc)
    except Exception as exc:
        logger.exception("Workbook import aborted")
        result.mark_failed(f"Critical error during import: {exc}")
        return result

    _write_audit_log(store, user_id, result, cancelled=cancelled)
    logger.info(
        "Import finished: %s accounts created, %s updated, %s interactions created, %s errors",
        result.accounts_created,
        result.accounts_updated,
        result.interactions_created,
        len(result.errors),
    )
    return result
