from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from openpyxl import load_workbook

from app.rukem.utils import normalize_text


@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str


# Column name variants accepted for each member field (English and the
# Indonesian headers of the association's own spreadsheets).
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "member_number": ("Member Number", "Nomor Anggota", "member_number"),
    "data_number": ("Data Number", "Nomor Data", "data_number"),
    "household_head_name": ("Household Head", "Name", "Nama Kepala Keluarga", "Nama", "household_head_name"),
    "family_card_number": ("Family Card", "No KK", "family_card_number"),
    "national_id": ("National ID", "NIK", "No KTP", "national_id"),
    "birth_place": ("Birth Place", "Tempat Lahir", "birth_place"),
    "birth_date": ("Birth Date", "Tanggal Lahir", "birth_date"),
    "gender": ("Gender", "Jenis Kelamin", "gender"),
    "religion": ("Religion", "Agama", "religion"),
    "marital_status": ("Marital Status", "Status Perkawinan", "marital_status"),
    "occupation": ("Occupation", "Pekerjaan", "occupation"),
    "education": ("Education", "Pendidikan", "education"),
    "address": ("Address", "Alamat", "address"),
    "rt": ("RT", "rt"),
    "rw": ("RW", "rw"),
    "village": ("Village", "Kelurahan", "village"),
    "district": ("District", "Kecamatan", "district"),
    "city": ("City", "Kota", "city"),
    "province": ("Province", "Provinsi", "province"),
    "postal_code": ("Postal Code", "Kode Pos", "postal_code"),
    "phone": ("Phone", "No HP", "phone"),
    "email": ("Email", "email"),
    "registered_on": ("Registered On", "Tanggal Daftar", "registered_on"),
}

GENDER_ALIASES = {"LAKI-LAKI": "L", "PEREMPUAN": "P", "M": "L", "F": "P"}


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        # Excel stores NIK / RT as numbers
        return str(int(value))
    return str(value).strip()


def _get(row: dict[str, Any], *names: str) -> str:
    for n in names:
        if n in row and row[n] is not None:
            return _cell_text(row[n])
    return ""


def _row_payload(idx: int, raw: dict[str, Any], errors: list[CsvRowError]) -> dict | None:
    """Map one sheet row to a create_member() payload; None for blank or rejected rows."""
    if not raw or all(_cell_text(v) == "" for v in raw.values()):
        return None

    payload: dict = {"_row_number": idx}
    for field, aliases in COLUMN_ALIASES.items():
        payload[field] = normalize_text(_get(raw, *aliases))

    if not payload["household_head_name"]:
        errors.append(CsvRowError(idx, "Household head name is required."))
        return None
    if payload["gender"]:
        g = payload["gender"].upper()
        payload["gender"] = GENDER_ALIASES.get(g, g)
    return payload


def parse_members_csv(file_bytes: bytes) -> tuple[list[dict], list[CsvRowError]]:
    """
    Parse a member list CSV (the same layout the member export writes).

    Only the household head name is required. Dates must be YYYY-MM-DD;
    full validation happens in service.create_member().

    Returns:
      (rows, errors)
    Each row is a payload dict for service.create_member() plus `_row_number`.
    """
    text = file_bytes.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV has no header row.")

    rows: list[dict] = []
    errors: list[CsvRowError] = []
    for idx, raw in enumerate(reader, start=2):  # 1 = header
        payload = _row_payload(idx, {k: v for k, v in raw.items() if isinstance(k, str)}, errors)
        if payload:
            rows.append(payload)
    return rows, errors


def parse_members_xlsx(file_bytes: bytes) -> tuple[list[dict], list[CsvRowError]]:
    """Same as parse_members_csv() for the first sheet of an .xlsx workbook."""
    try:
        wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except Exception as e:
        raise ValueError(f"Could not read workbook: {e}") from e
    rows: list[dict] = []
    errors: list[CsvRowError] = []
    try:
        sheet_rows = wb.worksheets[0].iter_rows(values_only=True)
        header = next(sheet_rows, None)
        if not header or not any(h for h in header):
            raise ValueError("Workbook has no header row.")
        names = [_cell_text(h) for h in header]

        for idx, values in enumerate(sheet_rows, start=2):
            raw = {name: value for name, value in zip(names, values) if name}
            payload = _row_payload(idx, raw, errors)
            if payload:
                rows.append(payload)
    finally:
        # read-only workbooks keep the archive open until closed
        wb.close()
    return rows, errors


def parse_members_file(filename: str, file_bytes: bytes) -> tuple[list[dict], list[CsvRowError]]:
    """Dispatch on extension: .xlsx via openpyxl, anything else as CSV."""
    if filename.lower().endswith(".xlsx"):
        return parse_members_xlsx(file_bytes)
    return parse_members_csv(file_bytes)
