"""Natural-key derivation for reference entities.

Each reference entity type has exactly one key function here. The same
function produces the key used to look an entity up and the key stored when
it is created, so near-duplicate spellings of one real-world entity collapse
onto a single row.

Keys are prefixed with the attribute they came from (``npi:``, ``name:``, ...)
so that an NPI and a NABP number with the same digits never collide.
"""

import re
import string
from datetime import date
from typing import Any

from importer_340b.ingest.normalizers import digits_only, normalize_ndc, parse_date, to_text

NPI_LENGTH = 10

_PUNCTUATION = re.compile(f"[{re.escape(string.punctuation)}]")
_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^0-9a-z]")
_LETTERS = re.compile(r"[A-Za-z]")


def canonical_text(value: Any) -> str:
    """Case-fold, strip punctuation and collapse whitespace.

    >>> canonical_text("  St. Mary's   Pharmacy ")
    'st marys pharmacy'
    """
    text = to_text(value)
    if text is None:
        return ""
    text = _PUNCTUATION.sub("", text.casefold())
    return _WHITESPACE.sub(" ", text).strip()


def canonical_code(value: Any) -> str:
    """Case-fold and keep only letters and digits (DEA numbers, MRNs, ids)."""
    text = to_text(value)
    if text is None:
        return ""
    return _NON_ALNUM.sub("", text.casefold())


def _canonical_date(value: Any) -> str:
    parsed = value if isinstance(value, date) else parse_date(value)
    return parsed.isoformat() if parsed else ""


def _join(*parts: str) -> str:
    return "|".join(parts)


# ============ COLUMN CLASSIFICATION ============


def split_nabp_npi(value: Any) -> tuple[str | None, str | None]:
    """Classify the claims "Pharmacy NABP or NPI" column.

    Returns:
        (npi, nabp): a 10-digit value is an NPI, anything else a NABP number.
    """
    text = to_text(value)
    if text is None:
        return None, None
    digits = digits_only(text)
    if len(digits) == NPI_LENGTH:
        return digits, None
    return None, text


def split_npi_dea(value: Any) -> tuple[str | None, str | None]:
    """Classify the claims "Prescriber NPI/DEA" column.

    Returns:
        (npi, dea): an all-digit value is an NPI, a value with letters a DEA number.
    """
    text = to_text(value)
    if text is None:
        return None, None
    if _LETTERS.search(text):
        return None, text.upper()
    return digits_only(text), None


def split_prescriber_name(value: Any) -> tuple[str | None, str | None]:
    """Split a claims prescriber name into (last, first).

    Accepts ``"Last, First"`` and ``"Last First"``; a single word is taken as
    the last name.
    """
    text = to_text(value)
    if text is None:
        return None, None
    if "," in text:
        last, _, first = text.partition(",")
    else:
        last, _, first = text.partition(" ")
    return last.strip() or None, first.strip() or None


# ============ KEY FUNCTIONS ============


def covered_entity_key(identifier: Any, entity_name: Any) -> str | None:
    """``id:`` OPAID / organization identifier, else ``name:`` entity name."""
    code = canonical_code(identifier)
    if code:
        return f"id:{code}"
    name = canonical_text(entity_name)
    if name:
        return f"name:{name}"
    return None


def pharmacy_key(npi: Any, nabp: Any, pharmacy_name: Any) -> str | None:
    """``npi:`` NPI, else ``nabp:`` NABP number, else ``name:`` pharmacy name."""
    npi_digits = digits_only(npi)
    if npi_digits:
        return f"npi:{npi_digits}"
    nabp_code = canonical_code(nabp)
    if nabp_code:
        return f"nabp:{nabp_code}"
    name = canonical_text(pharmacy_name)
    if name:
        return f"name:{name}"
    return None


def prescriber_key(npi: Any, dea: Any, last_name: Any, first_name: Any) -> str | None:
    """``npi:`` NPI, else ``dea:`` DEA number, else ``name:`` last + first."""
    npi_digits = digits_only(npi)
    if npi_digits:
        return f"npi:{npi_digits}"
    dea_code = canonical_code(dea)
    if dea_code:
        return f"dea:{dea_code}"
    last = canonical_text(last_name)
    if last:
        return f"name:{_join(last, canonical_text(first_name))}"
    return None


def drug_key(ndc: Any) -> str | None:
    """``ndc:`` NDC normalized to 11 digits."""
    normalized = normalize_ndc(ndc)
    if normalized is None:
        return None
    return f"ndc:{normalized}"


def patient_key(
    mrn: Any,
    external_id: Any,
    last_name: Any,
    first_name: Any,
    date_of_birth: Any,
) -> str | None:
    """``mrn:`` MRN, else ``ext:`` external id + name + DOB, else ``name:`` name + DOB.

    The external id is only unique within one payer export, so it is
    qualified by name and date of birth.
    """
    mrn_code = canonical_code(mrn)
    if mrn_code:
        return f"mrn:{mrn_code}"

    last = canonical_text(last_name)
    first = canonical_text(first_name)
    dob = _canonical_date(date_of_birth)

    external = canonical_code(external_id)
    if external:
        return f"ext:{_join(external, last, first, dob)}"
    if last or first:
        return f"name:{_join(last, first, dob)}"
    return None


def location_key(location_identifier: Any, location_name: Any) -> str | None:
    """``id:`` location identifier, else ``name:`` location name."""
    code = canonical_code(location_identifier)
    if code:
        return f"id:{code}"
    name = canonical_text(location_name)
    if name:
        return f"name:{name}"
    return None


def insurance_plan_key(insurance_company: Any, bin_number: Any, pcn: Any) -> str | None:
    """``plan:`` company + BIN + PCN. None when the company is blank."""
    company = canonical_text(insurance_company)
    if not company:
        return None
    return f"plan:{_join(company, digits_only(bin_number), canonical_code(pcn))}"
