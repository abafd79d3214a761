"""
Credential Service — QR credentials for paid registrations.

The token is canonical JSON:
    {"id": str, "name": str, "email": str, "type": str, "timestamp": int}
where timestamp is the issue time in unix milliseconds.
"""

import json
import time

import structlog

from registration_service import domain

logger = structlog.get_logger(__name__)

MAX_CREDENTIAL_AGE_MS = 365 * 24 * 60 * 60 * 1000
TOKEN_FIELDS = ("id", "name", "email", "type")


def _now_millis():
    return int(time.time() * 1000)


def encode_token(payload):
    return json.dumps(
        {
            "id": payload.id,
            "name": payload.name,
            "email": payload.email,
            "type": payload.type,
            "timestamp": payload.timestamp,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )


def decode_token(token):
    """Parse a token into a CredentialPayload, or None if it is malformed."""
    if not isinstance(token, str):
        return None
    try:
        data = json.loads(token)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    for name in TOKEN_FIELDS:
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            return None
    timestamp = data.get("timestamp")
    # bool is an int subclass
    if not isinstance(timestamp, int) or isinstance(timestamp, bool):
        return None

    return domain.CredentialPayload(
        id=data["id"],
        name=data["name"],
        email=data["email"],
        type=data["type"],
        timestamp=timestamp,
    )


class CredentialIssuer:

    def __init__(self, renderer, storage, clock=_now_millis):
        self.renderer = renderer
        self.storage = storage
        self.clock = clock

    def mint(self, registration):
        """
        Build, rasterize and store the credential for a paid registration.

        Calling this for an unpaid registration is a programming error.
        Storage and rasterization failures surface as CollaboratorFailure.
        """
        if registration.payment_status != domain.COMPLETED:
            raise RuntimeError(
                f"Credential requested for registration {registration.id} "
                f"with payment status {registration.payment_status}"
            )

        token = encode_token(domain.CredentialPayload(
            id=registration.id,
            name=registration.full_name,
            email=registration.email,
            type=registration.participation_type,
            timestamp=self.clock(),
        ))
        image = self.renderer.render(token)
        image_url = self.storage.save(f"qr-codes/{registration.id}.png", image, "image/png")

        logger.info("credential_minted", registration_id=registration.id, image_url=image_url)
        return domain.Credential(token=token, image_url=image_url)

    def verify(self, token):
        """Return the CredentialPayload, or None if malformed or expired."""
        payload = decode_token(token)
        if payload is None:
            return None
        if self.clock() - payload.timestamp > MAX_CREDENTIAL_AGE_MS:
            return None
        return payload
