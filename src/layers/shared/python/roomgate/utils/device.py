"""User-agent classification and device fingerprint hashing."""

import hashlib

from roomgate.models.access import DeviceFingerprint

# Closed set of browser families an invitation can allow
BROWSER_FAMILIES = ("Edge", "Opera", "Firefox", "Chrome", "Safari", "Unknown")

# Checked in order: Edge and Opera user agents also contain "Chrome" and
# "Safari", and Chrome user agents also contain "Safari".
_BROWSER_MARKERS = (
    ("Edge", ("edg/", "edge/", "edga/", "edgios/")),
    ("Opera", ("opr/", "opera")),
    ("Firefox", ("firefox/", "fxios/")),
    ("Chrome", ("chrome/", "crios/", "chromium/")),
    ("Safari", ("safari/",)),
)


def detect_browser(user_agent: str | None) -> str:
    """Classify a user agent into one of BROWSER_FAMILIES."""
    if not user_agent:
        return "Unknown"
    ua = user_agent.lower()
    for family, markers in _BROWSER_MARKERS:
        if any(marker in ua for marker in markers):
            return family
    return "Unknown"


def canonical_browser(name: str) -> str | None:
    """Map an allowlist entry to its family name, case-insensitively."""
    lowered = name.strip().lower()
    for family in BROWSER_FAMILIES:
        if family.lower() == lowered:
            return family
    return None


def _js_bool(value: bool) -> str:
    return "true" if value else "false"


def fingerprint_hash(fingerprint: DeviceFingerprint) -> str:
    """Compute the SHA-256 device hash from browser characteristics.

    The hashed string joins user agent, language, platform, screen
    resolution, timezone, cookie flag and do-not-track with "|".
    """
    parts = [
        fingerprint.user_agent,
        fingerprint.language,
        fingerprint.platform,
        fingerprint.screen_resolution,
        fingerprint.timezone,
        _js_bool(fingerprint.cookie_enabled),
        fingerprint.do_not_track,
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
