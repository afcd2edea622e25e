"""Access attempt inputs: client context, device fingerprint, geolocation."""

from typing import Any

from pydantic import BaseModel as PydanticBaseModel, ConfigDict, Field


class DeviceFingerprint(PydanticBaseModel):
    """Browser-reported device characteristics."""

    model_config = ConfigDict(populate_by_name=True)

    user_agent: str = Field("", alias="userAgent")
    language: str = ""
    platform: str = ""
    screen_resolution: str = Field("", alias="screenResolution")
    timezone: str = ""
    cookie_enabled: bool = Field(True, alias="cookieEnabled")
    do_not_track: str = Field("", alias="doNotTrack")
    hash: str | None = Field(None, description="Client-computed device id")


class Geolocation(PydanticBaseModel):
    """Country-level location of a client IP."""

    ip: str
    country: str | None = None
    country_code: str | None = None
    region: str | None = None
    city: str | None = None
    timezone: str | None = None
    isp: str | None = None


class ClientContext(PydanticBaseModel):
    """What the transport layer knows about the requester."""

    client_ip: str = "unknown"
    user_agent: str = ""
    device_fingerprint: DeviceFingerprint | None = None
    declared_user_id: str | None = None
    declared_email: str | None = None
    patient_name: str | None = None


class AccessContext(PydanticBaseModel):
    """A single access attempt as seen by the security validator."""

    token_claims: dict[str, Any]
    client_ip: str
    user_agent: str = ""
    device_fingerprint: DeviceFingerprint | None = None
    geolocation: Geolocation | None = None
    declared_email: str | None = None

    @classmethod
    def from_client(
        cls,
        claims: dict[str, Any],
        client: ClientContext,
        geolocation: Geolocation | None,
    ) -> "AccessContext":
        return cls(
            token_claims=claims,
            client_ip=client.client_ip,
            user_agent=client.user_agent,
            device_fingerprint=client.device_fingerprint,
            geolocation=geolocation,
            declared_email=client.declared_email,
        )


class ValidateInvitationRequest(PydanticBaseModel):
    """Request body for the public validation endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=1)
    device_fingerprint: DeviceFingerprint | None = Field(None, alias="deviceFingerprint")
    user_email: str | None = Field(None, alias="userEmail")
    user_id: str | None = Field(None, alias="userId")
    patient_name: str | None = Field(None, alias="patientName", max_length=100)
