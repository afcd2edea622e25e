"""Country name/code canonicalization backed by the ISO 3166 table."""

import pycountry


def to_alpha2(value: str | None) -> str | None:
    """Resolve a country name or ISO code to its alpha-2 code.

    Accepts alpha-2, alpha-3, common and official names, case-insensitively.

    Args:
        value: Country name or code as entered by an owner or reported by
            the geolocation provider.

    Returns:
        Upper-case alpha-2 code, or None if the value is not a known country.
    """
    if not value or not value.strip():
        return None
    try:
        return pycountry.countries.lookup(value.strip()).alpha_2
    except LookupError:
        return None


def is_known_country(value: str) -> bool:
    """Check whether a value names a country in the ISO table."""
    return to_alpha2(value) is not None


def country_in_allowlist(candidates: list[str | None], allowlist: list[str]) -> bool:
    """Check whether any candidate country matches an allowlist entry.

    Both sides are canonicalized to alpha-2 so "Germany", "DE" and "DEU" are
    equivalent. Values the table does not know fall back to case-insensitive
    string equality.

    Args:
        candidates: Country values describing the requester (name, code).
        allowlist: Countries the invitation accepts.
    """
    present = [c.strip() for c in candidates if c and c.strip()]
    if not present:
        return False

    allowed_codes = {to_alpha2(entry) for entry in allowlist} - {None}
    allowed_raw = {entry.strip().lower() for entry in allowlist}

    for value in present:
        code = to_alpha2(value)
        if code and code in allowed_codes:
            return True
        if value.lower() in allowed_raw:
            return True
    return False
