"""
Helpers for reading claims out of access tokens.

Tokens are decoded without verifying their signature: the broker only
shows who is signed in, it never makes trust decisions from the claims.
"""

from typing import Any, Dict, Optional

import jwt

_USER_NAME_CLAIMS = ("upn", "unique_name", "preferred_username", "app_displayname", "appid")


def decode_claims(access_token: str) -> Dict[str, Any]:
    """Return the token's claims, or an empty dict for anything undecodable."""
    if not access_token:
        return {}
    try:
        return jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return {}


def get_user_name_from_access_token(access_token: str) -> Optional[str]:
    """
    Name of the signed-in identity.

    Users carry ``upn``; guests and some personal accounts carry
    ``unique_name`` or ``preferred_username``; app-only tokens fall back to
    the application's display name or id.
    """
    claims = decode_claims(access_token)
    for claim in _USER_NAME_CLAIMS:
        if claims.get(claim):
            return claims[claim]
    return None


def get_tenant_id_from_access_token(access_token: str) -> Optional[str]:
    return decode_claims(access_token).get("tid")
