"""
BCE authentication (bce-auth-v1) signer and verifier for BosStorage SDK
"""

import hashlib
import hmac
import logging
from collections.abc import Mapping
from datetime import datetime, UTC
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import quote

from .error import (
    AuthenticationException,
    ClockSkewException,
    InvalidArgumentException,
    InvalidCredentialException,
)
from .models import CanonicalRequest, CredentialContext, SignatureMaterial

AUTH_VERSION = "bce-auth-v1"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DEFAULT_EXPIRATION_SECONDS = 1800

SECURITY_TOKEN_HEADER = "x-bce-security-token"

# Query parameters carrying authorization material in a presigned URL
PRESIGN_ACCESS_KEY_ID = "accessKeyId"
PRESIGN_TIMESTAMP = "timestamp"
PRESIGN_EXPIRATION = "expirationSeconds"
PRESIGN_SIGNED_HEADERS = "signedHeaders"
PRESIGN_SIGNATURE = "signature"
PRESIGN_PARAMS = (
    PRESIGN_ACCESS_KEY_ID,
    PRESIGN_TIMESTAMP,
    PRESIGN_EXPIRATION,
    PRESIGN_SIGNED_HEADERS,
    PRESIGN_SIGNATURE,
)

QueryParams = Union[Mapping, Iterable[Tuple[str, Optional[str]]], None]

logger = logging.getLogger(__name__)


def uri_encode(value: str, keep_slash: bool = False) -> str:
    """Percent-encode everything outside ``[A-Za-z0-9-._~]``; space becomes ``%20``."""
    return quote(value, safe="/" if keep_slash else "")


def canonical_uri(path: str) -> str:
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    return uri_encode(path, keep_slash=True)


def query_items(params: QueryParams) -> List[Tuple[str, Optional[str]]]:
    """Flatten a query mapping (or sequence of pairs) into ordered pairs."""
    if params is None:
        return []
    if isinstance(params, Mapping):
        items = []
        for key, value in params.items():
            if isinstance(value, (list, tuple)):
                items.extend((key, v) for v in value)
            else:
                items.append((key, value))
        return items
    return [(key, value) for key, value in params]


def canonical_query_string(params: QueryParams) -> str:
    """Sort encoded keys byte-wise; repeated keys keep their relative order."""
    encoded = []
    for key, value in query_items(params):
        if str(key).lower() == "authorization":
            continue
        encoded.append((
            uri_encode(str(key)),
            "" if value is None else uri_encode(str(value)),
        ))
    encoded.sort(key=lambda pair: pair[0])
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_headers(
    headers: Optional[Mapping],
    headers_to_sign: Optional[Iterable[str]] = None,
) -> Tuple[str, List[str]]:
    """Return the canonical header block and the sorted signed header names."""
    lowered: Dict[str, str] = {}
    for name, value in (headers or {}).items():
        if value is None:
            continue
        lowered[str(name).strip().lower()] = str(value).strip()

    wanted = {"host"}
    for name in headers_to_sign or ():
        wanted.add(name.strip().lower())

    if not lowered.get("host"):
        raise InvalidArgumentException("The host header is required for signing.")

    signed = sorted(name for name in wanted if lowered.get(name))
    lines = sorted(f"{uri_encode(name)}:{uri_encode(lowered[name])}" for name in signed)
    return "\n".join(lines), signed


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a signing timestamp; anything unparseable is a clock error."""
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except (TypeError, ValueError):
        raise ClockSkewException(f"Unparseable signing timestamp: {value!r}")


def auth_string_prefix(access_key_id: str, timestamp: datetime, expiration_seconds: int) -> str:
    return f"{AUTH_VERSION}/{access_key_id}/{format_timestamp(timestamp)}/{expiration_seconds}"


def authorization_string(material: SignatureMaterial) -> str:
    prefix = auth_string_prefix(material.access_key_id, material.timestamp, material.expiration_seconds)
    return f"{prefix}/{';'.join(material.signed_header_names)}/{material.signature}"


def parse_authorization(value: str) -> SignatureMaterial:
    """Split a ``bce-auth-v1/...`` token back into its signature material."""
    parts = value.strip().split("/")
    if len(parts) != 6 or parts[0] != AUTH_VERSION:
        raise AuthenticationException("Malformed authorization string.", error_code="InvalidAuthorization")

    _, access_key_id, timestamp, expiration, signed_headers, signature = parts
    try:
        expiration_seconds = int(expiration)
    except ValueError:
        raise AuthenticationException("Malformed expiration in authorization string.", error_code="InvalidAuthorization")

    return SignatureMaterial(
        access_key_id=access_key_id,
        timestamp=_parse_presented_timestamp(timestamp),
        expiration_seconds=expiration_seconds,
        signed_header_names=[h for h in signed_headers.split(";") if h],
        signature=signature,
    )


def _parse_presented_timestamp(value: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ClockSkewException as ex:
        raise AuthenticationException(ex.message, error_code="InvalidAuthorization")


def _hmac_sha256_hex(key: str, message: str) -> str:
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class RequestSigner:
    """
    Signs requests using the BCE authentication protocol (bce-auth-v1).

    The signer holds no per-request state; every input is passed to
    ``sign``/``compute`` and the clock is read once per call.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock().astimezone(UTC).replace(microsecond=0)

    def resolve_timestamp(self, timestamp: Union[datetime, str, None] = None) -> datetime:
        """Normalize an optional timestamp override to UTC second precision."""
        if timestamp is None:
            return self.now()
        if isinstance(timestamp, str):
            return parse_timestamp(timestamp)
        if isinstance(timestamp, datetime):
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=UTC)
            return timestamp.astimezone(UTC).replace(microsecond=0)
        raise ClockSkewException(f"Unsupported signing timestamp: {timestamp!r}")

    @staticmethod
    def check_credentials(credentials: Optional[CredentialContext]) -> None:
        if credentials is None:
            raise InvalidCredentialException("No credentials supplied for signing.")
        if not credentials.access_key_id or not credentials.access_key_id.strip():
            raise InvalidCredentialException("Access key id must not be empty.")
        if not credentials.secret_key or not credentials.secret_key.strip():
            raise InvalidCredentialException("Secret key must not be empty.")
        if "/" in credentials.access_key_id:
            raise InvalidCredentialException("Access key id must not contain '/'.")

    @staticmethod
    def build_canonical_request(
        method: str,
        path: str,
        params: QueryParams = None,
        headers: Optional[Mapping] = None,
        headers_to_sign: Optional[Iterable[str]] = None,
    ) -> CanonicalRequest:
        header_block, signed = canonical_headers(headers, headers_to_sign)
        return CanonicalRequest(
            method=method.upper(),
            canonical_uri=canonical_uri(path),
            canonical_query_string=canonical_query_string(params),
            canonical_headers=header_block,
            signed_header_names=signed,
        )

    @staticmethod
    def signature_for(
        secret_key: str,
        prefix: str,
        canonical_request: CanonicalRequest,
    ) -> str:
        signing_key = _hmac_sha256_hex(secret_key, prefix)
        return _hmac_sha256_hex(signing_key, canonical_request.string_to_sign())

    def compute(
        self,
        credentials: CredentialContext,
        method: str,
        path: str,
        params: QueryParams = None,
        headers: Optional[Mapping] = None,
        expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
        headers_to_sign: Optional[Iterable[str]] = None,
        timestamp: Union[datetime, str, None] = None,
    ) -> SignatureMaterial:
        """Compute the signature material for a request."""
        self.check_credentials(credentials)
        if isinstance(expiration_seconds, bool) or not isinstance(expiration_seconds, int) or expiration_seconds < 0:
            raise InvalidArgumentException(
                f"Expiration must be a non-negative integer, got {expiration_seconds!r}."
            )

        signing_time = self.resolve_timestamp(timestamp)
        canonical = self.build_canonical_request(method, path, params, headers, headers_to_sign)
        prefix = auth_string_prefix(credentials.access_key_id, signing_time, expiration_seconds)
        signature = self.signature_for(credentials.secret_key, prefix, canonical)

        logger.debug(
            "Signed %s %s signedHeaders=%s timestamp=%s",
            canonical.method,
            canonical.canonical_uri,
            ";".join(canonical.signed_header_names),
            format_timestamp(signing_time),
        )

        return SignatureMaterial(
            access_key_id=credentials.access_key_id,
            timestamp=signing_time,
            expiration_seconds=expiration_seconds,
            signed_header_names=canonical.signed_header_names,
            signature=signature,
        )

    def sign(
        self,
        credentials: CredentialContext,
        method: str,
        path: str,
        params: QueryParams = None,
        headers: Optional[Mapping] = None,
        expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
        headers_to_sign: Optional[Iterable[str]] = None,
        timestamp: Union[datetime, str, None] = None,
    ) -> str:
        """
        Sign a request and return the authorization string.
        """
        material = self.compute(
            credentials,
            method,
            path,
            params=params,
            headers=headers,
            expiration_seconds=expiration_seconds,
            headers_to_sign=headers_to_sign,
            timestamp=timestamp,
        )
        return authorization_string(material)


class SignatureVerifier:
    """
    Verifies bce-auth-v1 signed requests, from either the Authorization
    header or presigned URL query parameters.

    Attributes:
        lookup: Returns the credentials for an access key id, or None.
    """

    def __init__(
        self,
        lookup: Callable[[str], Optional[CredentialContext]],
        signer: Optional[RequestSigner] = None,
    ):
        self.lookup = lookup
        self._signer = signer or RequestSigner()

    def verify(
        self,
        method: str,
        path: str,
        params: QueryParams = None,
        headers: Optional[Mapping] = None,
        now: Optional[datetime] = None,
    ) -> CredentialContext:
        """Recompute the signature of a received request.

        Args:
            method: HTTP method.
            path: Decoded request path.
            params: Decoded query parameters, in received order.
            headers: Request headers.
            now: Verification time; defaults to the current wall clock.

        Returns:
            The credentials the request was signed with.

        Raises:
            AuthenticationException: Missing, malformed, expired or mismatched signature.
        """
        items = query_items(params)
        lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
        authorization = lowered.get("authorization")
        presigned = {k: v for k, v in items if k in PRESIGN_PARAMS}

        if authorization and PRESIGN_SIGNATURE in presigned:
            raise AuthenticationException(
                "Both Authorization header and presigned URL parameters present.",
                error_code="InvalidAuthorization",
            )

        if authorization:
            material = parse_authorization(authorization)
            signed_items = items
            presented_token = lowered.get(SECURITY_TOKEN_HEADER)
        elif PRESIGN_SIGNATURE in presigned:
            material = self._material_from_query(presigned)
            signed_items = [(k, v) for k, v in items if k != PRESIGN_SIGNATURE]
            presented_token = dict(items).get(SECURITY_TOKEN_HEADER)
        else:
            raise AuthenticationException(
                "Missing authentication: no Authorization header or presigned URL parameters.",
                error_code="AccessDenied",
            )

        self.check_window(material, now)

        credentials = self.lookup(material.access_key_id)
        if credentials is None:
            raise AuthenticationException(
                f"Unknown access key id {material.access_key_id!r}.",
                error_code="InvalidAccessKeyId",
            )
        if credentials.session_token and not hmac.compare_digest(
            credentials.session_token, presented_token or ""
        ):
            raise AuthenticationException("Session token mismatch.", error_code="InvalidSessionToken")

        try:
            canonical = self._signer.build_canonical_request(
                method, path, signed_items, headers, material.signed_header_names
            )
        except InvalidArgumentException as ex:
            raise AuthenticationException(ex.message, error_code="SignatureDoesNotMatch")

        if canonical.signed_header_names != sorted(material.signed_header_names):
            raise AuthenticationException(
                "Signed headers are missing from the request.",
                error_code="SignatureDoesNotMatch",
            )

        prefix = auth_string_prefix(material.access_key_id, material.timestamp, material.expiration_seconds)
        expected = self._signer.signature_for(credentials.secret_key, prefix, canonical)

        if not hmac.compare_digest(expected, material.signature):
            logger.debug("Signature mismatch: expected=%s, got=%s", expected, material.signature)
            raise AuthenticationException(
                "The request signature we calculated does not match the signature you provided.",
                error_code="SignatureDoesNotMatch",
            )

        return credentials

    @staticmethod
    def check_window(material: SignatureMaterial, now: Optional[datetime] = None) -> None:
        """Accept only ``timestamp <= now <= timestamp + expiration`` (whole seconds)."""
        if now is None:
            now = datetime.now(UTC)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        now = now.astimezone(UTC).replace(microsecond=0)

        if now < material.timestamp:
            raise AuthenticationException(
                "Request timestamp is in the future.", error_code="RequestTimeTooSkewed"
            )
        if now > material.expires_at:
            raise AuthenticationException("Request has expired.", error_code="RequestExpired")

    @staticmethod
    def _material_from_query(presigned: Dict[str, Optional[str]]) -> SignatureMaterial:
        for name in PRESIGN_PARAMS:
            if not presigned.get(name):
                raise AuthenticationException(
                    f"Missing presigned URL parameter {name!r}.",
                    error_code="InvalidAuthorization",
                )
        try:
            expiration_seconds = int(presigned[PRESIGN_EXPIRATION])
        except ValueError:
            raise AuthenticationException("Malformed expirationSeconds.", error_code="InvalidAuthorization")

        return SignatureMaterial(
            access_key_id=presigned[PRESIGN_ACCESS_KEY_ID],
            timestamp=_parse_presented_timestamp(presigned[PRESIGN_TIMESTAMP]),
            expiration_seconds=expiration_seconds,
            signed_header_names=[h for h in presigned[PRESIGN_SIGNED_HEADERS].split(";") if h],
            signature=presigned[PRESIGN_SIGNATURE],
        )
