"""
Presigned URL generation for BosStorage SDK
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Iterable, Optional, Tuple, Union
from urllib.parse import urlparse

from ._signer import (
    DEFAULT_EXPIRATION_SECONDS,
    PRESIGN_ACCESS_KEY_ID,
    PRESIGN_EXPIRATION,
    PRESIGN_PARAMS,
    PRESIGN_SIGNATURE,
    PRESIGN_SIGNED_HEADERS,
    PRESIGN_TIMESTAMP,
    SECURITY_TOKEN_HEADER,
    QueryParams,
    RequestSigner,
    canonical_headers,
    canonical_query_string,
    canonical_uri,
    format_timestamp,
    query_items,
)
from .error import (
    ExpirationTooLargeException,
    InvalidArgumentException,
    InvalidExpirationException,
)
from .models import CredentialContext

MAX_PRESIGN_EXPIRATION_SECONDS = 604800

logger = logging.getLogger(__name__)


def split_endpoint(endpoint: str, default_scheme: str = "http") -> Tuple[str, str]:
    """Return ``(scheme, host)`` for an endpoint with or without a scheme."""
    if "://" not in endpoint:
        endpoint = f"{default_scheme}://{endpoint}"
    parsed = urlparse(endpoint)
    if not parsed.netloc:
        raise InvalidArgumentException(f"Invalid endpoint {endpoint!r}.")
    return parsed.scheme.lower(), parsed.netloc


class PresignedUrlBuilder:
    """
    Embeds bce-auth-v1 signature material in a URL query string so the URL
    alone authorizes the request until it expires.
    """

    def __init__(
        self,
        signer: Optional[RequestSigner] = None,
        max_expiration_seconds: int = MAX_PRESIGN_EXPIRATION_SECONDS,
    ):
        self._signer = signer or RequestSigner()
        self.max_expiration_seconds = max_expiration_seconds

    def validate_expiration(self, expiration_seconds: int) -> None:
        if isinstance(expiration_seconds, bool) or not isinstance(expiration_seconds, int):
            raise InvalidExpirationException(f"Expiration must be an integer, got {expiration_seconds!r}.")
        if expiration_seconds <= 0:
            raise InvalidExpirationException(
                f"Expiration must be at least 1 second, got {expiration_seconds}."
            )
        if expiration_seconds > self.max_expiration_seconds:
            raise ExpirationTooLargeException(
                f"Expiration must not exceed {self.max_expiration_seconds} seconds, got {expiration_seconds}."
            )

    def build(
        self,
        credentials: CredentialContext,
        method: str,
        endpoint: str,
        path: str,
        params: QueryParams = None,
        headers: Optional[Mapping] = None,
        expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
        headers_to_sign: Optional[Iterable[str]] = None,
        timestamp: Union[datetime, str, None] = None,
    ) -> str:
        """
        Generate a presigned URL.

        The authorization parameters are part of the signed query string;
        only ``signature`` itself is appended after signing.
        """
        self.validate_expiration(expiration_seconds)
        self._signer.check_credentials(credentials)

        scheme, host = split_endpoint(endpoint)
        signing_headers = {k: v for k, v in (headers or {}).items() if str(k).lower() != "host"}
        signing_headers["host"] = host
        _, signed = canonical_headers(signing_headers, headers_to_sign)

        query = query_items(params)
        for key, _ in query:
            if key in PRESIGN_PARAMS:
                raise InvalidArgumentException(f"Query parameter {key!r} is reserved for presigning.")

        signing_time = self._signer.resolve_timestamp(timestamp)
        query.extend([
            (PRESIGN_ACCESS_KEY_ID, credentials.access_key_id),
            (PRESIGN_TIMESTAMP, format_timestamp(signing_time)),
            (PRESIGN_EXPIRATION, str(expiration_seconds)),
            (PRESIGN_SIGNED_HEADERS, ";".join(signed)),
        ])
        if credentials.session_token:
            query.append((SECURITY_TOKEN_HEADER, credentials.session_token))

        material = self._signer.compute(
            credentials,
            method,
            path,
            params=query,
            headers=signing_headers,
            expiration_seconds=expiration_seconds,
            headers_to_sign=signed,
            timestamp=signing_time,
        )

        query_string = canonical_query_string(query) + f"&{PRESIGN_SIGNATURE}={material.signature}"
        url = f"{scheme}://{host}{canonical_uri(path)}?{query_string}"

        logger.debug(
            "Presigned %s %s expirationSeconds=%s signedHeaders=%s",
            method.upper(),
            canonical_uri(path),
            expiration_seconds,
            ";".join(signed),
        )
        return url
