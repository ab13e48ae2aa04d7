"""
Registry identifier normalisation (``onboarding_kernel.domain.identifiers``).

Responsibility
--------------
Turns raw user input into a normalised ``RegistryIdentifier`` or raises
``IdentifierFormatError``. Everything here is local: no registry is ever
contacted for input that fails these checks.

Two disjoint variants exist:

* COMPANY -- Dutch chamber-of-commerce number. Spaces, dashes and dots
  are stripped, short numbers are left-padded with zeros to 8 digits.
* TAX -- EU VAT number. Spaces, dashes and dots are stripped, letters
  are uppercased, and the result must match the pattern of its
  two-letter country prefix.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from onboarding_kernel.exceptions import IdentifierFormatError, InvalidArgumentError


class IdentifierKind(str, Enum):
    """Registry identifier variants."""

    COMPANY = "company"
    TAX = "tax"


COMPANY_NUMBER_LENGTH = 8
COMPANY_RAW_MAX_LENGTH = 20
TAX_RAW_MAX_LENGTH = 30

_COMPANY_PATTERN = re.compile(r"^\d{8}$")
_SEPARATORS = re.compile(r"[\s\-.]")

TAX_COUNTRY_PATTERNS: dict[str, re.Pattern[str]] = {
    "AT": re.compile(r"^ATU\d{8}$"),
    "BE": re.compile(r"^BE\d{10}$"),
    "DE": re.compile(r"^DE\d{9}$"),
    "DK": re.compile(r"^DK\d{8}$"),
    "ES": re.compile(r"^ES[A-Z]\d{7}[A-Z]$"),
    "FI": re.compile(r"^FI\d{8}$"),
    "FR": re.compile(r"^FR[A-Z0-9]{2}\d{9}$"),
    "GB": re.compile(r"^GB(\d{9}|\d{12}|GD\d{3}|HA\d{3})$"),
    "IT": re.compile(r"^IT\d{11}$"),
    "LU": re.compile(r"^LU\d{8}$"),
    "NL": re.compile(r"^NL\d{9}B\d{2}$"),
    "PT": re.compile(r"^PT\d{9}$"),
    "SE": re.compile(r"^SE\d{12}$"),
}


@dataclass(frozen=True, slots=True)
class RegistryIdentifier:
    """A normalised identifier, immutable once validated."""

    kind: IdentifierKind
    value: str

    @property
    def country_code(self) -> str | None:
        if self.kind is IdentifierKind.TAX:
            return self.value[:2]
        return None

    def __str__(self) -> str:
        return self.value


def normalize_company_number(raw: str) -> RegistryIdentifier:
    """Normalise a company-register number.

    Raises:
        IdentifierFormatError: Empty, too long, non-numeric, or more than
            eight digits once separators are removed.
    """
    kind = IdentifierKind.COMPANY.value
    if not isinstance(raw, str) or not raw.strip():
        raise IdentifierFormatError(kind, str(raw), "identifier is required")
    if len(raw) > COMPANY_RAW_MAX_LENGTH:
        raise IdentifierFormatError(kind, raw, "input too long")

    cleaned = _SEPARATORS.sub("", raw)
    if not cleaned.isdigit() or not cleaned.isascii():
        raise IdentifierFormatError(kind, raw, "must contain digits only")

    padded = cleaned.zfill(COMPANY_NUMBER_LENGTH)
    if not _COMPANY_PATTERN.match(padded):
        raise IdentifierFormatError(
            kind, raw, f"must be at most {COMPANY_NUMBER_LENGTH} digits"
        )
    return RegistryIdentifier(IdentifierKind.COMPANY, padded)


def normalize_tax_number(raw: str) -> RegistryIdentifier:
    """Normalise an EU VAT number.

    Raises:
        IdentifierFormatError: Empty, too long, unknown country prefix, or
            not matching the country pattern.
    """
    kind = IdentifierKind.TAX.value
    if not isinstance(raw, str) or not raw.strip():
        raise IdentifierFormatError(kind, str(raw), "identifier is required")
    if len(raw) > TAX_RAW_MAX_LENGTH:
        raise IdentifierFormatError(kind, raw, "input too long")

    cleaned = _SEPARATORS.sub("", raw).upper()
    pattern = TAX_COUNTRY_PATTERNS.get(cleaned[:2])
    if pattern is None:
        raise IdentifierFormatError(
            kind, raw, f"unsupported country prefix {cleaned[:2]!r}"
        )
    if not pattern.match(cleaned):
        raise IdentifierFormatError(
            kind, raw, f"does not match the {cleaned[:2]} VAT number format"
        )
    return RegistryIdentifier(IdentifierKind.TAX, cleaned)


_NORMALIZERS = {
    IdentifierKind.COMPANY: normalize_company_number,
    IdentifierKind.TAX: normalize_tax_number,
}


def normalize_identifier(kind: IdentifierKind | str, raw: str) -> RegistryIdentifier:
    """Dispatch to the normaliser for ``kind``."""
    return _NORMALIZERS[parse_kind(kind)](raw)


def parse_kind(kind: IdentifierKind | str) -> IdentifierKind:
    """Coerce a kind name to ``IdentifierKind``.

    Raises:
        InvalidArgumentError: Unknown kind.
    """
    if isinstance(kind, IdentifierKind):
        return kind
    try:
        return IdentifierKind(str(kind).lower())
    except ValueError:
        raise InvalidArgumentError(
            "kind", f"must be one of {[k.value for k in IdentifierKind]}"
        ) from None
