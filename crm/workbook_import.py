from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from io import BytesIO
from typing import Any, Iterable, Mapping, Protocol

from dateutil import parser as date_parser
from openpyxl import load_workbook

from crm import import_aliases as aliases
from crm.import_result import ImportDiagnostics
from crm.models import AccountKind, AccountPriority, AccountStatus, InteractionKind

logger = logging.getLogger(__name__)

# Day zero of spreadsheet serial dates (serial 1 is 1899-12-31 under the 1900 leap-year bug).
EXCEL_EPOCH = datetime(1899, 12, 30)
UNKNOWN_NAME = "Unknown"

ACCOUNT_SHEET_PATTERN = re.compile(r"klienci|clients?|accounts?", re.IGNORECASE)
INTERACTION_SHEET_PATTERN = re.compile(r"kontakt|contacts?|interakcj|interactions?", re.IGNORECASE)

_WHITESPACE = re.compile(r"\s+")
_LABEL_SEPARATORS = re.compile(r"[\s_]+")


class WorkbookReadError(Exception):
    pass


class WorkbookSource(Protocol):
    sheet_names: list[str]

    def rows(self, sheet_name: str) -> list[dict[str, Any]]: ...


class SheetRow(dict):
    """Cells keyed by header; ``number`` is the 1-based spreadsheet row."""

    number: int | None = None


@dataclass
class CandidateAccount:
    first_name: str
    last_name: str = ""
    org_name: str | None = None
    nip: str | None = None
    regon: str | None = None
    pesel: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    address: str | None = None
    source: str | None = None
    status: AccountStatus | None = AccountStatus.NEW_LEAD
    priority: AccountPriority | None = None
    next_follow_up_at: datetime | None = None

    @property
    def kind(self) -> AccountKind:
        return AccountKind.ORGANIZATION if self.org_name else AccountKind.PERSON


@dataclass
class CandidateInteraction:
    account_identifier: str
    notes: str
    occurred_at: datetime
    kind: InteractionKind = InteractionKind.OTHER


@dataclass
class ParsedWorkbook:
    accounts: list[CandidateAccount] = field(default_factory=list)
    interactions: list[CandidateInteraction] = field(default_factory=list)
    diagnostics: ImportDiagnostics = field(default_factory=ImportDiagnostics)


def clean_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Numeric cells typed as float still hold phone numbers and tax ids.
        value = int(value)
    cleaned = str(value).replace("\xa0", " ").strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {'"', "'"}:
        cleaned = cleaned[1:-1].strip()
    return _WHITESPACE.sub(" ", cleaned)


def _find_raw(row: Mapping[str, Any], keys: Iterable[str]) -> Any:
    keys = tuple(keys)
    for key in keys:
        if key in row and clean_value(row[key]):
            return row[key]

    for key in keys:
        wanted = key.lower()
        for row_key, raw in row.items():
            if str(row_key).lower() == wanted and clean_value(raw):
                return raw
    return None


def find_by_aliases(row: Mapping[str, Any], keys: Iterable[str]) -> str | None:
    """Return the first non-empty cleaned cell among ``keys``.

    Exact header matches win over case-insensitive ones, and earlier aliases
    win over later ones within each pass.
    """
    raw = _find_raw(row, keys)
    if raw is None:
        return None
    return clean_value(raw) or None


def _lookup_label(text: str | None, table: Mapping[str, Any]) -> Any:
    if not text:
        return None
    key = _LABEL_SEPARATORS.sub(" ", text.strip().lower())
    return table.get(key)


def _parse_date_text(raw: str) -> datetime | None:
    if not raw:
        return None
    try:
        return date_parser.isoparse(raw)
    except ValueError:
        pass
    try:
        return date_parser.parse(raw, dayfirst=True)
    except (ValueError, OverflowError):
        return None


def coerce_optional_date(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return EXCEL_EPOCH + timedelta(days=value)
        except (OverflowError, ValueError):
            return None
    return _parse_date_text(clean_value(value))


def coerce_date(value: Any, *, now: datetime | None = None) -> datetime:
    """Convert a cell to a datetime, falling back to ``now`` instead of failing.

    Numbers are spreadsheet serial dates counted from 1899-12-30, fractions
    carrying the time of day. A bad date must never cost the row.
    """
    parsed = coerce_optional_date(value)
    if parsed is not None:
        return parsed
    return now or datetime.now()


def select_account_sheet(sheet_names: list[str]) -> str | None:
    for name in sheet_names:
        if ACCOUNT_SHEET_PATTERN.search(name.lower()):
            return name
    return sheet_names[0] if sheet_names else None


def select_interaction_sheet(sheet_names: list[str], *, exclude: str | None = None) -> str | None:
    for name in sheet_names:
        if name == exclude:
            continue
        if INTERACTION_SHEET_PATTERN.search(name.lower()):
            return name
    return None


def row_looks_like_interaction(row: Mapping[str, Any]) -> bool:
    keys = {str(key).lower() for key in row}
    return any(indicator.lower() in keys for indicator in aliases.INTERACTION_INDICATORS)


def parse_account_row(row: Mapping[str, Any]) -> CandidateAccount | None:
    full_name = find_by_aliases(row, aliases.FULL_NAME)
    if full_name:
        # clean_value already collapsed whitespace runs to single spaces.
        first_name, _, last_name = full_name.partition(" ")
    else:
        first_name = find_by_aliases(row, aliases.FIRST_NAME) or ""
        last_name = find_by_aliases(row, aliases.LAST_NAME) or ""

    org_name = find_by_aliases(row, aliases.ORG_NAME)
    email = find_by_aliases(row, aliases.EMAIL)
    phone = find_by_aliases(row, aliases.PHONE)

    if not any((first_name, last_name, org_name, email, phone)):
        return None

    if not first_name and not last_name:
        first_name = org_name or UNKNOWN_NAME

    status = _lookup_label(find_by_aliases(row, aliases.STATUS), aliases.STATUS_LABELS)
    priority = _lookup_label(find_by_aliases(row, aliases.PRIORITY), aliases.PRIORITY_LABELS)

    return CandidateAccount(
        first_name=first_name,
        last_name=last_name,
        org_name=org_name,
        nip=find_by_aliases(row, aliases.NIP),
        regon=find_by_aliases(row, aliases.REGON),
        pesel=find_by_aliases(row, aliases.PESEL),
        email=email,
        phone=phone,
        website=find_by_aliases(row, aliases.WEBSITE),
        address=find_by_aliases(row, aliases.ADDRESS),
        source=find_by_aliases(row, aliases.SOURCE),
        status=status or AccountStatus.NEW_LEAD,
        priority=priority,
        next_follow_up_at=coerce_optional_date(_find_raw(row, aliases.NEXT_FOLLOW_UP)),
    )


def parse_interaction_row(row: Mapping[str, Any], *, now: datetime | None = None) -> CandidateInteraction | None:
    identifier = (
        find_by_aliases(row, aliases.INTERACTION_IDENTIFIER)
        or find_by_aliases(row, aliases.EMAIL)
        or find_by_aliases(row, aliases.ORG_NAME)
    )
    notes = find_by_aliases(row, aliases.INTERACTION_NOTES)
    if not identifier or not notes:
        return None

    kind = _lookup_label(find_by_aliases(row, aliases.INTERACTION_KIND), aliases.INTERACTION_KIND_LABELS)
    return CandidateInteraction(
        account_identifier=identifier,
        notes=notes,
        occurred_at=coerce_date(_find_raw(row, aliases.INTERACTION_DATE), now=now),
        kind=kind or InteractionKind.OTHER,
    )


class OpenpyxlWorkbook:
    """Materializes openpyxl sheets as header-keyed rows.

    The first non-blank row is the header. Every data row carries every header
    key, with ``""`` for empty cells, and fully blank rows are dropped.
    """

    def __init__(self, workbook):
        self._workbook = workbook

    @property
    def sheet_names(self) -> list[str]:
        return list(self._workbook.sheetnames)

    def rows(self, sheet_name: str) -> list[dict[str, Any]]:
        sheet = self._workbook[sheet_name]
        header: list[str] | None = None
        rows: list[dict[str, Any]] = []
        for row_num, values in enumerate(sheet.iter_rows(values_only=True), start=1):
            if not any(clean_value(v) for v in values):
                continue
            if header is None:
                header = _build_header(values)
                continue
            row = SheetRow(
                (name, values[i] if i < len(values) and values[i] is not None else "")
                for i, name in enumerate(header)
            )
            row.number = row_num
            rows.append(row)
        return rows


def _build_header(values: tuple[Any, ...]) -> list[str]:
    header: list[str] = []
    seen: dict[str, int] = {}
    for index, value in enumerate(values, start=1):
        name = clean_value(value) or f"Column {index}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        header.append(name)
    return header


def read_workbook(content: bytes) -> OpenpyxlWorkbook:
    try:
        workbook = load_workbook(BytesIO(content), data_only=True)
    except Exception as exc:
        raise WorkbookReadError(f"Could not read workbook: {exc}") from exc
    return OpenpyxlWorkbook(workbook)


def _row_label(row: Mapping[str, Any], position: int) -> int:
    # Plain dict rows have no number; assume a single header row above them.
    return getattr(row, "number", None) or position + 2


def _parse_rows(rows, parse_row, target: list, diagnostics: ImportDiagnostics, *, sheet: str, label: str) -> None:
    for position, row in enumerate(rows):
        try:
            candidate = parse_row(row)
        except Exception as exc:
            row_num = _row_label(row, position)
            diagnostics.error(f'Error in {label} row {row_num} of sheet "{sheet}": {exc}')
            logger.warning("Skipped %s row %s of sheet %r: %s", label, row_num, sheet, exc)
            continue
        if candidate is not None:
            target.append(candidate)


def parse_workbook(workbook: WorkbookSource) -> ParsedWorkbook:
    parsed = ParsedWorkbook()
    diagnostics = parsed.diagnostics
    sheet_names = list(workbook.sheet_names)
    diagnostics.warning(f"Sheets found: {', '.join(sheet_names) or 'none'}")

    account_sheet = select_account_sheet(sheet_names)
    if account_sheet is None:
        diagnostics.error("Workbook contains no sheets.")
        return parsed

    account_rows = workbook.rows(account_sheet)
    diagnostics.warning(f'Found {len(account_rows)} rows in sheet "{account_sheet}".')
    if account_rows:
        diagnostics.warning(f"Columns detected: {', '.join(str(key) for key in account_rows[0])}")

    _parse_rows(account_rows, parse_account_row, parsed.accounts, diagnostics, sheet=account_sheet, label="account")
    diagnostics.warning(f"Parsed {len(parsed.accounts)} accounts.")

    interaction_sheet = select_interaction_sheet(sheet_names, exclude=account_sheet)
    if interaction_sheet is not None:
        interaction_rows = workbook.rows(interaction_sheet)
        diagnostics.warning(f'Reading interactions from sheet "{interaction_sheet}".')
        sheet = interaction_sheet
    else:
        interaction_rows = [row for row in account_rows if row_looks_like_interaction(row)]
        if interaction_rows:
            diagnostics.warning(f'No interaction sheet found; reading interaction columns from "{account_sheet}".')
        sheet = account_sheet

    _parse_rows(interaction_rows, parse_interaction_row, parsed.interactions, diagnostics, sheet=sheet, label="interaction")
    if interaction_rows:
        diagnostics.warning(f"Parsed {len(parsed.interactions)} interactions.")

    logger.info(
        "Parsed workbook: %s accounts from %r, %s interactions, %s errors",
        len(parsed.accounts),
        account_sheet,
        len(parsed.interactions),
        len(diagnostics.errors),
    )
    return parsed
