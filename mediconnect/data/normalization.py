"""Map raw CMS rows onto :class:`ProviderRecord`.

The CMS Doctors and Clinicians national downloadable file is a fixed-column
extract, so fields are read by position. If CMS changes the column layout the
positional mapping silently stops matching and rows get discarded; the
``CMS_COLUMNS`` table is the single place to update.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, List, Optional

from mediconnect.models import ProviderRecord, ProviderSource, RawRow

logger = logging.getLogger(__name__)

CMS_COLUMNS = {
    "npi": 0,
    "last_name": 3,
    "first_name": 4,
    "middle_name": 5,
    "gender": 7,
    "credentials": 8,
    "medical_school": 9,
    "graduation_year": 10,
    "primary_specialty": 11,
    "secondary_specialty": 12,
    "telehealth": 17,
    "facility": 18,
    "address_line_1": 21,
    "address_line_2": 22,
    "city": 24,
    "state": 25,
    "postal_code": 26,
    "phone": 27,
}

_PHONE_DIGITS = 10


def _field(row: RawRow, name: str) -> str:
    index = CMS_COLUMNS[name]
    if index >= len(row):
        return ""
    return row[index].strip()


def _parse_year(value: str, as_of_year: int) -> Optional[int]:
    try:
        year = int(value)
    except (TypeError, ValueError):
        return None
    if 1900 <= year <= as_of_year:
        return year
    return None


def format_phone_number(phone: Optional[str]) -> Optional[str]:
    """Format a phone number as "(XXX) XXX-XXXX" when it has 10 digits (or 11 with a leading 1)."""
    if phone is None:
        return None
    digits = "".join(ch for ch in str(phone) if ch.isdigit())
    if len(digits) == 11 and digits[0] == "1":
        digits = digits[1:]
    if len(digits) == _PHONE_DIGITS:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    stripped = str(phone).strip()
    return stripped or None


def normalize(row: RawRow, *, as_of_year: Optional[int] = None) -> Optional[ProviderRecord]:
    """Build a ProviderRecord from one CMS row, or None when the row is unusable.

    A record needs a name and at least one of primary specialty or city.
    Experience is derived from the graduation year relative to ``as_of_year``
    (defaults to the current year).
    """
    as_of_year = as_of_year or date.today().year

    person = " ".join(
        part for part in (_field(row, "first_name"), _field(row, "middle_name"), _field(row, "last_name")) if part
    )
    facility = _field(row, "facility")
    name = person or facility
    primary_specialty = _field(row, "primary_specialty")
    city = _field(row, "city")

    if not name or not (primary_specialty or city):
        return None

    graduation_year = _parse_year(_field(row, "graduation_year"), as_of_year)
    address = ", ".join(part for part in (_field(row, "address_line_1"), _field(row, "address_line_2")) if part)
    npi = _field(row, "npi")

    return ProviderRecord(
        id=f"cms-{npi}" if npi else "",
        name=name,
        credentials=_field(row, "credentials"),
        primary_specialty=primary_specialty,
        secondary_specialty=_field(row, "secondary_specialty") or None,
        address=address,
        city=city,
        state=_field(row, "state"),
        postal_code=_field(row, "postal_code"),
        phone=_field(row, "phone") or None,
        source=ProviderSource.CSV_GOVERNMENT,
        is_verified_real=True,
        facility=facility or None,
        gender=_field(row, "gender") or None,
        medical_school=_field(row, "medical_school") or None,
        graduation_year=graduation_year,
        experience_years=(as_of_year - graduation_year) if graduation_year else None,
        telemedicine=_field(row, "telehealth").upper() in ("Y", "YES", "TRUE"),
    )


def normalize_rows(rows: Iterable[RawRow], *, as_of_year: Optional[int] = None) -> List[ProviderRecord]:
    """Normalize a batch, dropping unusable rows and later duplicates of an id.

    CMS lists one row per practice location, so the same NPI may appear more
    than once; the first occurrence wins. Rows without an NPI get a
    positional id.
    """
    records: List[ProviderRecord] = []
    seen_ids = set()
    discarded = 0
    for index, row in enumerate(rows):
        record = normalize(row, as_of_year=as_of_year)
        if record is None:
            discarded += 1
            continue
        if not record.id:
            record.id = f"cms-row-{index}"
        if record.id in seen_ids:
            continue
        seen_ids.add(record.id)
        records.append(record)

    if discarded:
        logger.info(f"Discarded {discarded} rows missing a name or specialty/city")
    return records
