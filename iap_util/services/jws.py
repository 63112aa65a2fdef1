"""
JWS payload decoding for Apple-signed data.

Apple delivers transactions, renewal info and notifications as compact JWS
strings (header.payload.signature). Only the payload segment is decoded;
the signature segment and the x5c certificate chain in the header are NOT
verified. Integrity rests on the HTTPS channel to Apple's API and on the
endpoint that receives notifications being registered with Apple.
"""

from typing import Any

import jwt


class JwsDecodeError(ValueError):
    """Raised when a string is not a decodable compact JWS with a JSON object payload."""


def decode_jws_payload(signed_data: str) -> dict[str, Any]:
    """
    Decode the claim set of a compact JWS without verifying its signature.

    Args:
        signed_data: Compact-serialized JWS (header.payload.signature)

    Returns:
        Decoded claim set

    Raises:
        JwsDecodeError: If the segments are not valid base64url JSON
    """
    if not isinstance(signed_data, str) or signed_data.count(".") != 2:
        raise JwsDecodeError("JWS must have exactly three segments")
    try:
        payload: dict[str, Any] = jwt.decode(
            signed_data,
            options={"verify_signature": False},
        )
    except jwt.exceptions.DecodeError as exc:
        raise JwsDecodeError(f"Invalid JWS data: {exc}") from exc
    return payload
