"""
BosClient - async client for Baidu Object Storage (BOS) style services
"""

import asyncio
import base64
import hashlib
import io
import json
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, BinaryIO, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from ._http import HttpClient
from ._mime import MIME_TYPE_OCTET_STREAM, mimetype_for_key
from ._presign import PresignedUrlBuilder
from ._signer import (
    SECURITY_TOKEN_HEADER,
    QueryParams,
    RequestSigner,
    canonical_query_string,
    canonical_uri,
    format_timestamp,
    uri_encode,
)
from .config import ClientConfiguration
from .error import (
    BosStorageException,
    InvalidArgumentException,
    InvalidPartException,
    InvalidSessionStateException,
    ObjectNotFoundException,
    BucketNotFoundException,
    ServerException,
    UploadNotFoundException,
    error_from_response,
)
from .models import (
    Bucket,
    BucketAclResult,
    CompleteMultipartUploadResult,
    CopyObjectResult,
    CredentialContext,
    Grant,
    InitiateMultipartUploadResult,
    ListMultipartUploadsResult,
    ListObjectsResult,
    MultipartUploadSummary,
    ObjectMetadata,
    ObjectSummary,
    PresignedUrlResult,
    PutObjectResult,
    UploadPartResult,
)
from .multipart import (
    ListPartsResult,
    PartETag,
    PartInfo,
    UploadSession,
    UploadStatus,
    as_part_etag,
    check_max_parts,
    check_part_number,
    normalize_etag,
)

URL_PREFIX = "/v1"
USER_METADATA_PREFIX = "x-bce-meta-"
CANNED_ACLS = ("private", "public-read", "public-read-write")

# Upload ids remembered after completion or abort, oldest forgotten first
MAX_CLOSED_UPLOADS = 1000

# Always signed when present on a request, in addition to x-bce-* headers
DEFAULT_HEADERS_TO_SIGN = ("host", "content-length", "content-type", "content-md5")

Data = Union[bytes, bytearray, str, BinaryIO]


class BosClient:
    """
    Async client for BOS-compatible object storage.

    Example:
        client = BosClient(
            endpoint="bj.bcebos.com",
            access_key_id="ak",
            secret_key="sk",
        )

        async with client:
            await client.put_object("photos", "archive/image.jpg", b"...")
            content = await client.get_object_content("photos", "archive/image.jpg")
    """

    def __init__(
        self,
        config: Optional[ClientConfiguration] = None,
        endpoint: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_key: Optional[str] = None,
        session_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize BosClient.

        Args:
            config: Full client configuration; the keyword arguments below are
                shortcuts used when it is omitted
            endpoint: Service address (e.g. "bj.bcebos.com" or "https://bj.bcebos.com")
            access_key_id: Access key id for request signing
            secret_key: Secret key for request signing
            session_token: Temporary session token sent with signed requests
            transport: httpx transport override
        """
        if config is None:
            credentials = None
            if access_key_id is not None or secret_key is not None:
                credentials = CredentialContext(access_key_id or "", secret_key or "", session_token)
            config = ClientConfiguration(credentials=credentials)
            if endpoint:
                config.endpoint = endpoint

        self.config = config
        self._http = HttpClient(
            timeout=config.timeout,
            max_connections=config.max_connections,
            transport=transport,
        )
        self._signer = RequestSigner()
        self._presigner = PresignedUrlBuilder(self._signer, config.max_presign_expiration_seconds)
        self._sessions: Dict[str, UploadSession] = {}
        self._closed_uploads: "OrderedDict[str, UploadStatus]" = OrderedDict()
        self.max_closed_uploads = MAX_CLOSED_UPLOADS
        self._logger = logging.getLogger(__name__)

    @property
    def credentials(self) -> Optional[CredentialContext]:
        return self.config.credentials

    # Request plumbing

    @staticmethod
    def _path(bucket_name: Optional[str] = None, object_name: Optional[str] = None) -> str:
        if not bucket_name:
            return "/"
        path = f"{URL_PREFIX}/{bucket_name}"
        if object_name is not None:
            path += f"/{object_name}"
        return path

    @staticmethod
    def _headers_to_sign(headers: Dict[str, str]) -> List[str]:
        names = set(DEFAULT_HEADERS_TO_SIGN)
        names.update(k.lower() for k in headers if k.lower().startswith("x-bce-"))
        return sorted(names)

    def _prepare(
        self,
        method: str,
        path: str,
        params: QueryParams = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, Dict[str, Union[str, bytes]]]:
        """Build the request URL and headers, signing them when credentials are configured."""
        headers = dict(headers or {})
        headers["Host"] = self.config.host

        credentials = self.credentials
        if credentials is not None:
            timestamp = self._signer.now()
            headers["x-bce-date"] = format_timestamp(timestamp)
            if credentials.session_token:
                headers[SECURITY_TOKEN_HEADER] = credentials.session_token
            headers["Authorization"] = self._signer.sign(
                credentials,
                method,
                path,
                params=params,
                headers=headers,
                expiration_seconds=self.config.signature_expiration_seconds,
                headers_to_sign=self._headers_to_sign(headers),
                timestamp=timestamp,
            )

        url = self.config.base_url + canonical_uri(path)
        query = canonical_query_string(params)
        if query:
            url += f"?{query}"
        return url, _wire_headers(headers)

    async def _make_request(
        self,
        method: str,
        path: str,
        params: QueryParams = None,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[Any] = None,
    ) -> httpx.Response:
        """Make a signed HTTP request and raise on error responses."""
        url, headers = self._prepare(method, path, params, headers)
        response = await self._http.request(method, url, headers=headers, content=content)
        await self._raise_for_status(response)
        return response

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return

        await response.aread()
        code = message = None
        request_id = response.headers.get("x-bce-request-id")
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                code = body.get("code")
                message = body.get("message")
                request_id = body.get("requestId") or request_id

        self._logger.warning(
            "[BosStorage] %s %s failed status=%s code=%s requestId=%s",
            response.request.method,
            response.request.url.raw_path.decode("ascii", "replace"),
            response.status_code,
            code,
            request_id,
        )
        raise error_from_response(response.status_code, code, message, request_id)

    @staticmethod
    def _metadata_headers(metadata: Optional[ObjectMetadata]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if metadata is None:
            return headers
        if metadata.content_type:
            headers["Content-Type"] = metadata.content_type
        for key, value in metadata.user_metadata.items():
            headers[f"{USER_METADATA_PREFIX}{key}"] = value
        return headers

    @staticmethod
    def _metadata_from_response(
        response: httpx.Response,
        bucket_name: str,
        object_name: str,
    ) -> ObjectMetadata:
        user_metadata = {}
        for raw_name, raw_value in response.headers.raw:
            name = raw_name.decode("latin-1")
            if name.lower().startswith(USER_METADATA_PREFIX):
                user_metadata[name[len(USER_METADATA_PREFIX):]] = raw_value.decode("utf-8")

        headers = response.headers
        last_modified = None
        if headers.get("Last-Modified"):
            try:
                last_modified = parsedate_to_datetime(headers["Last-Modified"])
            except (TypeError, ValueError):
                last_modified = None

        content_length = headers.get("Content-Length")
        return ObjectMetadata(
            object_name=object_name,
            bucket_name=bucket_name,
            content_length=int(content_length) if content_length is not None else None,
            content_type=headers.get("Content-Type"),
            content_md5=headers.get("Content-MD5"),
            content_range=headers.get("Content-Range"),
            etag=normalize_etag(headers.get("ETag")) or None,
            last_modified=last_modified,
            user_metadata=user_metadata,
        )

    def _prepare_body(
        self,
        data: Data,
        length: Optional[int] = None,
    ) -> Tuple[Union[bytes, AsyncIterator[bytes]], int, Optional[bytes]]:
        """Return ``(content, content_length, md5 digest or None)``.

        Bodies above the stream threshold are sent as an async chunk iterator
        and are not hashed locally.
        """
        if length is not None and length < 0:
            raise InvalidArgumentException(f"Content length must not be negative, got {length}.")

        if isinstance(data, str):
            data = data.encode("utf-8")
        if isinstance(data, (bytes, bytearray)):
            body = bytes(data if length is None else data[:length])
            return body, len(body), hashlib.md5(body).digest()

        if length is None:
            length = _remaining_length(data)
        if length is None or length <= self.config.stream_threshold:
            body = data.read() if length is None else data.read(length)
            return body, len(body), hashlib.md5(body).digest()

        return _aiter_file(data, length, self.config.chunk_size), length, None

    # Bucket operations

    async def list_buckets(self) -> List[Bucket]:
        """List all buckets owned by the credentials."""
        response = await self._make_request("GET", self._path())
        data = response.json()

        buckets = []
        for bucket_data in data.get("buckets", []):
            buckets.append(
                Bucket(
                    name=bucket_data["name"],
                    location=bucket_data.get("location"),
                    creation_date=_parse_datetime(bucket_data.get("creationDate")),
                )
            )
        return buckets

    async def create_bucket(self, bucket_name: str) -> None:
        """Create a new bucket."""
        await self._make_request("PUT", self._path(bucket_name))
        self._logger.info("Created bucket %s", bucket_name)

    async def does_bucket_exist(self, bucket_name: str) -> bool:
        """Check if a bucket exists (a bucket owned by someone else exists too)."""
        try:
            await self._make_request("HEAD", self._path(bucket_name))
            return True
        except BosStorageException as e:
            if e.status_code == 404:
                return False
            if e.status_code == 403:
                return True
            raise

    async def delete_bucket(self, bucket_name: str) -> None:
        """Remove a bucket (must be empty)."""
        await self._make_request("DELETE", self._path(bucket_name))

    async def get_bucket_location(self, bucket_name: str) -> Optional[str]:
        response = await self._make_request("GET", self._path(bucket_name), params={"location": None})
        return response.json().get("locationConstraint")

    async def set_bucket_acl(self, bucket_name: str, acl: Union[str, List[Grant]]) -> None:
        """Set a bucket ACL.

        ``acl`` is a canned ACL name, a list of grants, or an ACL JSON document.
        A malformed document is rejected by the service, not by the client.
        """
        params = {"acl": None}
        if isinstance(acl, str) and acl in CANNED_ACLS:
            await self._make_request("PUT", self._path(bucket_name), params=params, headers={"x-bce-acl": acl})
            return

        if isinstance(acl, str):
            payload = acl.encode("utf-8")
        else:
            payload = json.dumps({
                "accessControlList": [
                    {
                        "grantee": [{"id": grantee} for grantee in grant.grantee],
                        "permission": list(grant.permission),
                    }
                    for grant in acl
                ]
            }).encode("utf-8")

        headers = {
            "Content-Type": "application/json; charset=utf-8",
            "Content-Length": str(len(payload)),
            "Content-MD5": base64.b64encode(hashlib.md5(payload).digest()).decode("ascii"),
        }
        await self._make_request("PUT", self._path(bucket_name), params=params, headers=headers, content=payload)

    async def get_bucket_acl(self, bucket_name: str) -> BucketAclResult:
        response = await self._make_request("GET", self._path(bucket_name), params={"acl": None})
        data = response.json()
        grants = [
            Grant(
                grantee=[g.get("id") for g in entry.get("grantee", [])],
                permission=list(entry.get("permission", [])),
            )
            for entry in data.get("accessControlList", [])
        ]
        return BucketAclResult(
            bucket_name=bucket_name,
            owner_id=(data.get("owner") or {}).get("id"),
            access_control_list=grants,
        )

    # Object operations

    async def put_object(
        self,
        bucket_name: str,
        object_name: str,
        data: Data,
        metadata: Optional[ObjectMetadata] = None,
    ) -> PutObjectResult:
        """Upload an object to the bucket.

        When ``metadata.content_length`` is set, only that many bytes of
        ``data`` are sent.
        """
        metadata = metadata or ObjectMetadata()
        content, length, digest = self._prepare_body(data, metadata.content_length)

        headers = self._metadata_headers(metadata)
        headers.setdefault("Content-Type", mimetype_for_key(object_name))
        headers["Content-Length"] = str(length)
        if digest is not None:
            headers["Content-MD5"] = base64.b64encode(digest).decode("ascii")

        response = await self._make_request(
            "PUT", self._path(bucket_name, object_name), headers=headers, content=content
        )

        etag = normalize_etag(response.headers.get("ETag"))
        if not etag and digest is not None:
            etag = digest.hex()
        return PutObjectResult(bucket_name=bucket_name, object_name=object_name, etag=etag)

    async def get_object(
        self,
        bucket_name: str,
        object_name: str,
        output: BinaryIO,
        byte_range: Optional[Tuple[int, int]] = None,
    ) -> ObjectMetadata:
        """Stream an object (or the inclusive byte range ``[start, end]``) into ``output``."""
        headers = {}
        if byte_range is not None:
            headers["Range"] = _range_header(byte_range)

        url, headers = self._prepare("GET", self._path(bucket_name, object_name), headers=headers)
        async with self._http.stream("GET", url, headers=headers) as response:
            try:
                await self._raise_for_status(response)
            except ServerException as e:
                if e.status_code == 404:
                    raise ObjectNotFoundException(
                        f"Object '{object_name}' not found in bucket '{bucket_name}'.",
                        request_id=e.request_id,
                    )
                raise
            async for chunk in response.aiter_bytes(self.config.chunk_size):
                output.write(chunk)
            return self._metadata_from_response(response, bucket_name, object_name)

    async def get_object_content(
        self,
        bucket_name: str,
        object_name: str,
        byte_range: Optional[Tuple[int, int]] = None,
    ) -> bytes:
        """Download an object into memory."""
        buffer = io.BytesIO()
        await self.get_object(bucket_name, object_name, buffer, byte_range=byte_range)
        return buffer.getvalue()

    async def get_object_metadata(self, bucket_name: str, object_name: str) -> ObjectMetadata:
        """Get object metadata without downloading."""
        try:
            response = await self._make_request("HEAD", self._path(bucket_name, object_name))
        except ServerException as e:
            if e.status_code == 404:
                raise ObjectNotFoundException(
                    f"Object '{object_name}' not found in bucket '{bucket_name}'.",
                    request_id=e.request_id,
                )
            raise
        return self._metadata_from_response(response, bucket_name, object_name)

    async def delete_object(self, bucket_name: str, object_name: str) -> None:
        """Remove an object from the bucket."""
        await self._make_request("DELETE", self._path(bucket_name, object_name))

    async def copy_object(
        self,
        source_bucket: str,
        source_object: str,
        destination_bucket: str,
        destination_object: str,
        new_metadata: Optional[ObjectMetadata] = None,
    ) -> CopyObjectResult:
        """Copy an object to another location.

        With ``new_metadata`` the destination metadata is replaced, not merged.
        """
        headers = {
            "x-bce-copy-source": uri_encode(f"/{source_bucket}/{source_object}", keep_slash=True),
            "x-bce-metadata-directive": "replace" if new_metadata is not None else "copy",
        }
        headers.update(self._metadata_headers(new_metadata))

        response = await self._make_request("PUT", self._path(destination_bucket, destination_object), headers=headers)
        data = response.json() if response.content else {}
        return CopyObjectResult(
            bucket_name=destination_bucket,
            object_name=destination_object,
            etag=normalize_etag(data.get("eTag") or response.headers.get("ETag")) or None,
            last_modified=_parse_datetime(data.get("lastModified")),
        )

    async def list_objects(
        self,
        bucket_name: str,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        marker: Optional[str] = None,
        max_keys: Optional[int] = None,
    ) -> ListObjectsResult:
        """List objects in a bucket."""
        params = {}
        if prefix:
            params["prefix"] = prefix
        if delimiter:
            params["delimiter"] = delimiter
        if marker:
            params["marker"] = marker
        if max_keys is not None:
            params["maxKeys"] = str(max_keys)

        try:
            response = await self._make_request("GET", self._path(bucket_name), params=params)
        except ServerException as e:
            if e.status_code == 404:
                raise BucketNotFoundException(f"Bucket '{bucket_name}' not found.", request_id=e.request_id)
            raise
        data = response.json()

        objects = [
            ObjectSummary(
                key=obj["key"],
                size=int(obj.get("size", 0)),
                etag=normalize_etag(obj.get("eTag")) or None,
                last_modified=_parse_datetime(obj.get("lastModified")),
                owner_id=(obj.get("owner") or {}).get("id"),
            )
            for obj in data.get("contents", [])
        ]
        return ListObjectsResult(
            bucket_name=bucket_name,
            objects=objects,
            prefix=data.get("prefix"),
            delimiter=data.get("delimiter"),
            marker=data.get("marker"),
            next_marker=data.get("nextMarker"),
            max_keys=int(data.get("maxKeys", 1000)),
            is_truncated=bool(data.get("isTruncated", False)),
            common_prefixes=[p.get("prefix") for p in data.get("commonPrefixes", [])],
        )

    # Multipart operations

    def get_upload_session(self, upload_id: str) -> Optional[UploadSession]:
        """Return the locally tracked session for an in-progress upload."""
        return self._sessions.get(upload_id)

    def _live_session(self, upload_id: str, for_write: bool) -> Optional[UploadSession]:
        status = self._closed_uploads.get(upload_id)
        if status is not None:
            if for_write:
                raise UploadNotFoundException(f"Upload {upload_id} is {status.value.lower()}.")
            raise InvalidSessionStateException(f"Upload {upload_id} is already {status.value.lower()}.")
        return self._sessions.get(upload_id)

    def _retire_session(self, session: UploadSession) -> None:
        self._sessions.pop(session.upload_id, None)
        self._remember_closed(session.upload_id, session.status)

    def _remember_closed(self, upload_id: str, status: UploadStatus) -> None:
        self._closed_uploads[upload_id] = status
        self._closed_uploads.move_to_end(upload_id)
        while len(self._closed_uploads) > self.max_closed_uploads:
            self._closed_uploads.popitem(last=False)

    async def initiate_multipart_upload(
        self,
        bucket_name: str,
        object_name: str,
        metadata: Optional[ObjectMetadata] = None,
    ) -> InitiateMultipartUploadResult:
        """Initiate a multipart upload and start tracking its session."""
        headers = self._metadata_headers(metadata)
        response = await self._make_request(
            "POST", self._path(bucket_name, object_name), params={"uploads": None}, headers=headers
        )
        data = response.json()
        upload_id = data.get("uploadId")
        if not upload_id:
            raise ServerException("Multipart upload initiation did not return an upload ID.", response.status_code)

        self._sessions[upload_id] = UploadSession(
            upload_id=upload_id,
            bucket=bucket_name,
            key=object_name,
            metadata=metadata,
            min_part_size=self.config.min_part_size,
        )
        self._logger.info("Initiated upload %s for %s/%s", upload_id, bucket_name, object_name)
        return InitiateMultipartUploadResult(
            bucket_name=data.get("bucket", bucket_name),
            object_name=data.get("key", object_name),
            upload_id=upload_id,
        )

    async def upload_part(
        self,
        bucket_name: str,
        object_name: str,
        upload_id: str,
        part_number: int,
        data: Data,
        part_size: Optional[int] = None,
    ) -> UploadPartResult:
        """Upload one part; uploading the same part number again replaces it.

        Parts above the stream threshold are hashed in a first pass over the
        file, rewound and then streamed.
        """
        check_part_number(part_number)
        session = self._live_session(upload_id, for_write=True)
        if session is not None:
            session.check_writable()

        body, length, digest = self._prepare_body(data, part_size)
        streamed = digest is None
        if streamed:
            digest = _md5_of_file(data, length, self.config.chunk_size)

        headers = {
            "Content-Type": MIME_TYPE_OCTET_STREAM,
            "Content-Length": str(length),
            "Content-MD5": base64.b64encode(digest).decode("ascii"),
        }
        params = {"partNumber": str(part_number), "uploadId": upload_id}
        response = await self._make_request(
            "PUT", self._path(bucket_name, object_name), params=params, headers=headers, content=body
        )

        etag = normalize_etag(response.headers.get("ETag")) or digest.hex()
        if session is not None and streamed:
            if etag != digest.hex():
                raise InvalidPartException(
                    f"Part {part_number} ETag {etag} does not match the MD5 of the uploaded bytes."
                )
            session.record_part(part_number, etag=etag, size=length)
        elif session is not None:
            session.record_part(part_number, data=body, etag=etag)
        return UploadPartResult(part_number=part_number, etag=etag)

    async def list_parts(
        self,
        bucket_name: str,
        object_name: str,
        upload_id: str,
        part_number_marker: int = 0,
        max_parts: Optional[int] = None,
    ) -> ListPartsResult:
        """List uploaded parts in ascending part number order."""
        self._live_session(upload_id, for_write=True)

        params = {"uploadId": upload_id}
        if part_number_marker:
            params["partNumberMarker"] = str(part_number_marker)
        if max_parts is not None:
            params["maxParts"] = str(check_max_parts(max_parts))

        response = await self._make_request("GET", self._path(bucket_name, object_name), params=params)
        data = response.json()

        parts = [
            PartInfo(
                part_number=int(p["partNumber"]),
                etag=normalize_etag(p.get("eTag")),
                size=int(p.get("size", 0)),
                last_modified=_parse_datetime(p.get("lastModified")),
            )
            for p in data.get("parts", [])
        ]
        return ListPartsResult(
            bucket_name=data.get("bucket", bucket_name),
            object_name=data.get("key", object_name),
            upload_id=data.get("uploadId", upload_id),
            part_number_marker=int(data.get("partNumberMarker", 0)),
            next_part_number_marker=int(data.get("nextPartNumberMarker", 0)),
            max_parts=int(data.get("maxParts", 1000)),
            is_truncated=bool(data.get("isTruncated", False)),
            parts=parts,
            owner_id=(data.get("owner") or {}).get("id"),
            initiated=_parse_datetime(data.get("initiated")),
        )

    async def complete_multipart_upload(
        self,
        bucket_name: str,
        object_name: str,
        upload_id: str,
        part_etags: Iterable[Union[PartETag, dict]],
        metadata: Optional[ObjectMetadata] = None,
    ) -> CompleteMultipartUploadResult:
        """Complete a multipart upload with the full list of part ETags.

        A locally tracked session is cross-checked before any request is sent.
        Waiting for its in-flight part writes happens off the event loop.
        """
        part_etags = list(part_etags)
        session = self._live_session(upload_id, for_write=False)

        if session is None:
            return await self._send_complete(bucket_name, object_name, upload_id, part_etags, metadata)

        loop = asyncio.get_running_loop()
        final = await loop.run_in_executor(None, session.begin_completion, part_etags, metadata)
        try:
            result = await self._send_complete(bucket_name, object_name, upload_id, part_etags, metadata)
        except BaseException:
            session.finish_completion(None)
            raise
        session.finish_completion(final)
        self._retire_session(session)
        return result

    async def _send_complete(
        self,
        bucket_name: str,
        object_name: str,
        upload_id: str,
        part_etags: List[Union[PartETag, dict]],
        metadata: Optional[ObjectMetadata],
    ) -> CompleteMultipartUploadResult:
        parts = sorted((as_part_etag(p) for p in part_etags), key=lambda p: p.part_number)
        payload = json.dumps({
            "parts": [{"partNumber": p.part_number, "eTag": normalize_etag(p.etag)} for p in parts]
        }).encode("utf-8")

        headers = self._metadata_headers(metadata)
        headers["Content-Type"] = "application/json; charset=utf-8"
        headers["Content-Length"] = str(len(payload))
        response = await self._make_request(
            "POST",
            self._path(bucket_name, object_name),
            params={"uploadId": upload_id},
            headers=headers,
            content=payload,
        )
        data = response.json() if response.content else {}
        return CompleteMultipartUploadResult(
            bucket_name=data.get("bucket", bucket_name),
            object_name=data.get("key", object_name),
            etag=normalize_etag(data.get("eTag") or response.headers.get("ETag")) or None,
            location=data.get("location"),
        )

    async def abort_multipart_upload(self, bucket_name: str, object_name: str, upload_id: str) -> None:
        """Abort a multipart upload and discard its parts."""
        session = self._live_session(upload_id, for_write=False)
        if session is not None and session.status.terminal:
            raise InvalidSessionStateException(f"Upload {upload_id} is already {session.status.value.lower()}.")

        await self._make_request("DELETE", self._path(bucket_name, object_name), params={"uploadId": upload_id})

        if session is not None:
            await asyncio.get_running_loop().run_in_executor(None, session.abort)
            self._retire_session(session)
        else:
            self._remember_closed(upload_id, UploadStatus.ABORTED)
        self._logger.info("Aborted upload %s for %s/%s", upload_id, bucket_name, object_name)

    async def list_multipart_uploads(
        self,
        bucket_name: str,
        prefix: Optional[str] = None,
        key_marker: Optional[str] = None,
        max_uploads: Optional[int] = None,
    ) -> ListMultipartUploadsResult:
        """List in-progress multipart uploads of a bucket."""
        params: Dict[str, Optional[str]] = {"uploads": None}
        if prefix:
            params["prefix"] = prefix
        if key_marker:
            params["keyMarker"] = key_marker
        if max_uploads is not None:
            params["maxUploads"] = str(max_uploads)

        response = await self._make_request("GET", self._path(bucket_name), params=params)
        data = response.json()

        uploads = [
            MultipartUploadSummary(
                object_name=u["key"],
                upload_id=u["uploadId"],
                owner_id=(u.get("owner") or {}).get("id"),
                initiated=_parse_datetime(u.get("initiated")),
            )
            for u in data.get("uploads", [])
        ]
        return ListMultipartUploadsResult(
            bucket_name=data.get("bucket", bucket_name),
            uploads=uploads,
            prefix=data.get("prefix"),
            key_marker=data.get("keyMarker"),
            next_key_marker=data.get("nextKeyMarker"),
            max_uploads=int(data.get("maxUploads", 1000)),
            is_truncated=bool(data.get("isTruncated", False)),
        )

    # Presigned URLs

    def generate_presigned_url(
        self,
        bucket_name: str,
        object_name: str,
        expiration_in_seconds: int = 1800,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        params: QueryParams = None,
        headers_to_sign: Optional[Iterable[str]] = None,
    ) -> PresignedUrlResult:
        """Generate a URL whose query string alone authorizes the request until it expires."""
        timestamp = self._signer.now()
        url = self._presigner.build(
            self.credentials,
            method,
            self.config.base_url,
            self._path(bucket_name, object_name),
            params=params,
            headers=headers,
            expiration_seconds=expiration_in_seconds,
            headers_to_sign=headers_to_sign,
            timestamp=timestamp,
        )

        self._logger.info(
            "[BosStorage][PresignedUrl] host=%s method=%s expirySeconds=%s bucket=%s object=%s",
            self.config.host,
            method.upper(),
            expiration_in_seconds,
            bucket_name,
            object_name,
        )
        return PresignedUrlResult(
            url=url,
            expires_at=timestamp + timedelta(seconds=expiration_in_seconds),
        )

    async def close(self) -> None:
        """Close the client and cleanup resources."""
        await self._http.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _range_header(byte_range: Tuple[int, int]) -> str:
    try:
        start, end = byte_range
    except (TypeError, ValueError):
        raise InvalidArgumentException(f"Range must be a (start, end) pair, got {byte_range!r}.")
    if start < 0 or end < start:
        raise InvalidArgumentException(f"Invalid range [{start}, {end}].")
    return f"bytes={start}-{end}"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _remaining_length(fileobj: BinaryIO) -> Optional[int]:
    try:
        position = fileobj.tell()
        end = fileobj.seek(0, io.SEEK_END)
        fileobj.seek(position)
    except (AttributeError, OSError, ValueError):
        return None
    return end - position


async def _aiter_file(fileobj: BinaryIO, length: int, chunk_size: int) -> AsyncIterator[bytes]:
    remaining = length
    while remaining > 0:
        chunk = fileobj.read(min(chunk_size, remaining))
        if not chunk:
            raise InvalidArgumentException(f"Stream ended {remaining} bytes before the declared length.")
        remaining -= len(chunk)
        yield chunk


def _wire_headers(headers: Dict[str, str]) -> Dict[str, Union[str, bytes]]:
    # Values are signed as text; non-ASCII ones go out as UTF-8 bytes.
    return {name: value if value.isascii() else value.encode("utf-8") for name, value in headers.items()}


def _md5_of_file(fileobj: BinaryIO, length: int, chunk_size: int) -> bytes:
    """Hash the next ``length`` bytes of a seekable file and rewind to where it started."""
    try:
        position = fileobj.tell()
    except (AttributeError, OSError, ValueError):
        raise InvalidArgumentException("A part streamed from a file object must be seekable.")

    digest = hashlib.md5()
    remaining = length
    while remaining > 0:
        chunk = fileobj.read(min(chunk_size, remaining))
        if not chunk:
            raise InvalidArgumentException(f"Stream ended {remaining} bytes before the declared length.")
        digest.update(chunk)
        remaining -= len(chunk)
    fileobj.seek(position)
    return digest.digest()
