"""Tests for the security validation pipeline and its helpers."""

import hashlib
from datetime import timedelta

import pytest

from roomgate.models.access import AccessContext, DeviceFingerprint, Geolocation
from roomgate.models.audit import ViolationType
from roomgate.models.invitation import Invitation, InvitationConstraints
from roomgate.services.security_validation import SecurityValidator
from roomgate.utils.countries import country_in_allowlist, is_known_country, to_alpha2
from roomgate.utils.device import canonical_browser, detect_browser, fingerprint_hash

from conftest import CHROME_UA, EDGE_UA, FIREFOX_UA, SAFARI_UA

OPERA_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36 OPR/111.0.0.0"
)

FINGERPRINT = {
    "userAgent": CHROME_UA,
    "language": "en-US",
    "platform": "Win32",
    "screenResolution": "1920x1080",
    "timezone": "Europe/Berlin",
    "cookieEnabled": True,
    "doNotTrack": "1",
}


@pytest.fixture
def validator(clock):
    return SecurityValidator(clock=clock)


@pytest.fixture
def make_invitation(clock):
    def _make(bound_device_hash=None, **constraints):
        return Invitation(
            id="inv-123",
            owner_id="owner-123",
            room_name="consult-room-1",
            expires_at=clock() + timedelta(hours=1),
            constraints=InvitationConstraints(**constraints),
            bound_device_hash=bound_device_hash,
        )

    return _make


@pytest.fixture
def make_attempt():
    def _make(
        ip="203.0.113.10",
        user_agent=CHROME_UA,
        fingerprint=None,
        country=None,
        country_code=None,
        email=None,
        claims=None,
    ):
        geolocation = None
        if country or country_code:
            geolocation = Geolocation(ip=ip, country=country, country_code=country_code)
        return AccessContext(
            token_claims=claims or {"invitationId": "inv-123"},
            client_ip=ip,
            user_agent=user_agent,
            device_fingerprint=DeviceFingerprint.model_validate(fingerprint) if fingerprint else None,
            geolocation=geolocation,
            declared_email=email,
        )

    return _make


def _types(outcome) -> list[str]:
    return [v.type for v in outcome.violations]


class TestDetectBrowser:
    """Tests for user-agent classification."""

    @pytest.mark.parametrize(
        "user_agent,family",
        [
            (CHROME_UA, "Chrome"),
            (FIREFOX_UA, "Firefox"),
            (SAFARI_UA, "Safari"),
            (EDGE_UA, "Edge"),
            (OPERA_UA, "Opera"),
            ("curl/8.4.0", "Unknown"),
            ("", "Unknown"),
            (None, "Unknown"),
        ],
    )
    def test_detect_browser(self, user_agent, family):
        """Edge and Opera win over the Chrome and Safari tokens they contain."""
        assert detect_browser(user_agent) == family

    def test_canonical_browser(self):
        """Allowlist entries are matched case-insensitively."""
        assert canonical_browser(" firefox ") == "Firefox"
        assert canonical_browser("EDGE") == "Edge"
        assert canonical_browser("netscape") is None


class TestFingerprintHash:
    """Tests for device fingerprint hashing."""

    def test_hash_matches_joined_fields(self):
        """The hash covers every field joined with '|'."""
        expected = hashlib.sha256(
            f"{CHROME_UA}|en-US|Win32|1920x1080|Europe/Berlin|true|1".encode()
        ).hexdigest()

        assert fingerprint_hash(DeviceFingerprint.model_validate(FINGERPRINT)) == expected

    def test_hash_changes_with_any_field(self):
        """A different screen is a different device."""
        other = {**FINGERPRINT, "screenResolution": "1280x720"}

        assert fingerprint_hash(DeviceFingerprint.model_validate(FINGERPRINT)) != fingerprint_hash(
            DeviceFingerprint.model_validate(other)
        )


class TestCountries:
    """Tests for country canonicalization."""

    def test_to_alpha2(self):
        """Names and codes resolve to alpha-2."""
        assert to_alpha2("Germany") == "DE"
        assert to_alpha2("deu") == "DE"
        assert to_alpha2("de") == "DE"
        assert to_alpha2("Atlantis") is None
        assert to_alpha2("") is None

    def test_is_known_country(self):
        assert is_known_country("United States")
        assert not is_known_country("Narnia")

    def test_country_in_allowlist_mixes_names_and_codes(self):
        """A code matches an allowlisted name and vice versa."""
        assert country_in_allowlist(["DE", "Germany"], ["Germany"])
        assert country_in_allowlist([None, "Germany"], ["DEU"])
        assert not country_in_allowlist(["FR", "France"], ["DE", "AT"])
        assert not country_in_allowlist([None, ""], ["DE"])


class TestSecurityValidator:
    """Tests for SecurityValidator.validate."""

    def test_no_constraints_passes(self, validator, make_invitation, make_attempt):
        """An unconstrained invitation accepts anyone."""
        outcome = validator.validate(make_invitation(), make_attempt())

        assert outcome.passed
        assert outcome.bind_device is False

    def test_email_mismatch(self, validator, make_invitation, make_attempt):
        """Declared email must equal the allowed email."""
        invitation = make_invitation(email_allowed="pat@example.com")

        assert validator.validate(invitation, make_attempt(email="PAT@example.com")).passed
        outcome = validator.validate(invitation, make_attempt(email="mallory@example.com"))

        assert _types(outcome) == [ViolationType.WRONG_EMAIL.value]

    def test_email_falls_back_to_token_claim(self, validator, make_invitation, make_attempt):
        """Without a declared email the token's email is compared."""
        invitation = make_invitation(email_allowed="pat@example.com")
        attempt = make_attempt(claims={"invitationId": "inv-123", "email": "other@example.com"})

        assert _types(validator.validate(invitation, attempt)) == ["wrong_email"]

    def test_email_without_any_presented_email_passes(self, validator, make_invitation, make_attempt):
        """Nothing to compare means nothing to reject."""
        invitation = make_invitation(email_allowed="pat@example.com")

        assert validator.validate(invitation, make_attempt()).passed

    def test_country_allowlist(self, validator, make_invitation, make_attempt):
        """Geolocated country must be on the allowlist."""
        invitation = make_invitation(country_allowlist=["Germany", "AT"])

        assert validator.validate(invitation, make_attempt(country="Germany", country_code="DE")).passed
        assert validator.validate(invitation, make_attempt(country_code="AT")).passed
        outcome = validator.validate(invitation, make_attempt(country="France", country_code="FR"))

        assert _types(outcome) == ["wrong_country"]
        assert "France" in outcome.violations[0].details

    def test_country_check_skipped_without_geolocation(self, validator, make_invitation, make_attempt):
        """An unavailable lookup does not fail the attempt."""
        invitation = make_invitation(country_allowlist=["DE"])

        assert validator.validate(invitation, make_attempt()).passed

    def test_empty_country_allowlist_denies(self, validator, make_invitation, make_attempt):
        """A present but empty country list admits nobody."""
        invitation = make_invitation(country_allowlist=[])

        outcome = validator.validate(invitation, make_attempt(country="Germany", country_code="DE"))

        assert _types(outcome) == ["wrong_country"]

    def test_browser_allowlist(self, validator, make_invitation, make_attempt):
        """Browser family must be on the allowlist."""
        invitation = make_invitation(browser_allowlist=["Chrome"])

        assert validator.validate(invitation, make_attempt(user_agent=CHROME_UA)).passed
        assert _types(validator.validate(invitation, make_attempt(user_agent=FIREFOX_UA))) == [
            "wrong_browser"
        ]

    def test_edge_is_not_chrome(self, validator, make_invitation, make_attempt):
        """An Edge user agent does not satisfy a Chrome-only allowlist."""
        invitation = make_invitation(browser_allowlist=["Chrome"])

        outcome = validator.validate(invitation, make_attempt(user_agent=EDGE_UA))

        assert _types(outcome) == ["wrong_browser"]
        assert "Edge" in outcome.violations[0].details

    def test_browser_uses_fingerprint_user_agent(self, validator, make_invitation, make_attempt):
        """Without a request user agent the fingerprint's is used."""
        invitation = make_invitation(browser_allowlist=["Chrome"])

        assert validator.validate(invitation, make_attempt(user_agent="", fingerprint=FINGERPRINT)).passed

    def test_ip_allowlist(self, validator, make_invitation, make_attempt):
        """Client IP must be listed when the list is non-empty."""
        invitation = make_invitation(allowed_ip_addresses=["198.51.100.7"])

        assert validator.validate(invitation, make_attempt(ip="198.51.100.7")).passed
        assert _types(validator.validate(invitation, make_attempt())) == ["wrong_ip"]

    def test_empty_ip_allowlist_is_unconfigured(self, validator, make_invitation, make_attempt):
        """An empty IP list imposes no restriction."""
        assert validator.validate(make_invitation(allowed_ip_addresses=[]), make_attempt()).passed

    def test_device_allowlist_accepts_raw_or_computed_hash(
        self, validator, make_invitation, make_attempt
    ):
        """Either the client-reported id or the computed hash may be listed."""
        computed = fingerprint_hash(DeviceFingerprint.model_validate(FINGERPRINT))

        by_hash = make_invitation(allowed_device_ids=[computed])
        by_raw = make_invitation(allowed_device_ids=["device-abc"])

        assert validator.validate(by_hash, make_attempt(fingerprint=FINGERPRINT)).passed
        assert validator.validate(
            by_raw, make_attempt(fingerprint={**FINGERPRINT, "hash": "device-abc"})
        ).passed
        assert _types(validator.validate(by_raw, make_attempt(fingerprint=FINGERPRINT))) == [
            "wrong_device"
        ]
        assert _types(validator.validate(by_raw, make_attempt())) == ["wrong_device"]

    def test_device_binding_first_use_binds(self, validator, make_invitation, make_attempt):
        """An unbound device-bound invitation asks the caller to bind."""
        outcome = validator.validate(make_invitation(device_binding=True), make_attempt(fingerprint=FINGERPRINT))

        assert outcome.passed
        assert outcome.bind_device is True
        assert outcome.device_hash == fingerprint_hash(DeviceFingerprint.model_validate(FINGERPRINT))

    def test_device_binding_requires_fingerprint(self, validator, make_invitation, make_attempt):
        """No fingerprint, no entry."""
        outcome = validator.validate(make_invitation(device_binding=True), make_attempt())

        assert _types(outcome) == ["wrong_device"]
        assert outcome.bind_device is False

    def test_device_binding_rejects_other_device(self, validator, make_invitation, make_attempt):
        """A bound invitation only admits the bound device."""
        bound = fingerprint_hash(DeviceFingerprint.model_validate(FINGERPRINT))
        invitation = make_invitation(device_binding=True, bound_device_hash=bound)

        assert validator.validate(invitation, make_attempt(fingerprint=FINGERPRINT)).passed
        other = {**FINGERPRINT, "platform": "MacIntel"}
        assert _types(validator.validate(invitation, make_attempt(fingerprint=other))) == ["wrong_device"]

    def test_all_failures_are_reported(self, validator, make_invitation, make_attempt):
        """Checks do not short-circuit; every failure is listed."""
        invitation = make_invitation(
            email_allowed="pat@example.com",
            country_allowlist=["DE"],
            browser_allowlist=["Firefox"],
            allowed_ip_addresses=["198.51.100.7"],
            device_binding=True,
        )
        attempt = make_attempt(email="mallory@example.com", country="France", country_code="FR")

        outcome = validator.validate(invitation, attempt)

        assert _types(outcome) == [
            "wrong_email",
            "wrong_country",
            "wrong_browser",
            "wrong_ip",
            "wrong_device",
        ]
        assert all(v.invitation_id == "inv-123" for v in outcome.violations)
        assert all(v.ip == "203.0.113.10" for v in outcome.violations)

    def test_failed_attempt_never_binds(self, validator, make_invitation, make_attempt):
        """A device is only bound when every check passes."""
        invitation = make_invitation(device_binding=True, allowed_ip_addresses=["198.51.100.7"])

        outcome = validator.validate(invitation, make_attempt(fingerprint=FINGERPRINT))

        assert _types(outcome) == ["wrong_ip"]
        assert outcome.bind_device is False
