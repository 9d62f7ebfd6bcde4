"""Access tokens for the pub/sub broker.

The broker accepts HS256 JWTs signed with the service access key. Client
tokens carry the user identity and the client audience; server tokens carry
the REST API audience and no subject.
"""
import time
from typing import Optional

import jwt


def mint_token(
    access_key: str,
    audience: str,
    ttl_minutes: int = 60,
    subject: Optional[str] = None,
    now: Optional[int] = None,
) -> str:
    issued_at = int(now if now is not None else time.time())
    payload = {
        "aud": audience,
        "iat": issued_at,
        "exp": issued_at + ttl_minutes * 60,
    }
    if subject is not None:
        payload["sub"] = subject
        payload["nameid"] = subject
    return jwt.encode(payload, access_key, algorithm="HS256")


def decode_token(token: str, access_key: str, audience: str) -> dict:
    """Verify and decode a token minted by :func:`mint_token`.

    Raises:
        jwt.InvalidTokenError: If the signature, audience or expiry is bad.
    """
    return jwt.decode(token, access_key, algorithms=["HS256"], audience=audience)
