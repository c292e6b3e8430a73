import base64
import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from email.utils import format_datetime
from typing import Dict, List, Optional
from urllib.parse import parse_qsl, unquote

import httpx
import pytest
import pytest_asyncio

from bosstorage import BosClient, ClientConfiguration, CredentialContext, SignatureVerifier
from bosstorage.error import AuthenticationException

ENDPOINT = "bos.test"
ACCESS_KEY_ID = "AKIATESTBOSKEY000001"
SECRET_KEY = "bosTestSecretKey0000000000000000000000000"
OWNER_ID = "a0a2fbeb8c8b4e1f8e3f0c7b2d1e6a90"
BUCKET = "ut-py-bucket"


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    user_metadata: Dict[str, str]
    etag: str
    last_modified: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class StoredUpload:
    upload_id: str
    key: str
    content_type: Optional[str]
    user_metadata: Dict[str, str]
    initiated: datetime = field(default_factory=lambda: datetime.now(UTC))
    parts: Dict[int, StoredObject] = field(default_factory=dict)


@dataclass
class StoredBucket:
    name: str
    canned_acl: str = "private"
    acl: List[dict] = field(default_factory=list)
    objects: Dict[str, StoredObject] = field(default_factory=dict)
    uploads: Dict[str, StoredUpload] = field(default_factory=dict)
    created: datetime = field(default_factory=lambda: datetime.now(UTC))


class ServiceError(Exception):
    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


def _iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _meta_from_headers(request: httpx.Request) -> Dict[str, str]:
    meta = {}
    for raw_name, raw_value in request.headers.raw:
        name = raw_name.decode("latin-1")
        if name.lower().startswith("x-bce-meta-"):
            meta[name[len("x-bce-meta-"):]] = raw_value.decode("utf-8")
    return meta


class FakeBosService:
    """In-process BOS service: verifies signatures and keeps objects in memory."""

    def __init__(self, credentials: List[CredentialContext]):
        self._credentials = {c.access_key_id: c for c in credentials}
        self.verifier = SignatureVerifier(self._credentials.get)
        self.buckets: Dict[str, StoredBucket] = {}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        try:
            return self._dispatch(request)
        except AuthenticationException as ex:
            return self._error(ex.status_code or 403, ex.error_code, ex.message)
        except ServiceError as ex:
            return self._error(ex.status, ex.code, ex.message)

    @staticmethod
    def _error(status: int, code: str, message: str) -> httpx.Response:
        request_id = str(uuid.uuid4())
        return httpx.Response(
            status,
            json={"code": code, "message": message, "requestId": request_id},
            headers={"x-bce-request-id": request_id},
        )

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        raw_path, _, raw_query = request.url.raw_path.decode("ascii").partition("?")
        path = unquote(raw_path)
        params = parse_qsl(raw_query, keep_blank_values=True)
        query = dict(params)
        method = request.method

        authenticated = "authorization" in request.headers or "signature" in query
        if authenticated:
            self.verifier.verify(method, path, params, request.headers)

        if path == "/":
            self._require_auth(authenticated)
            return self._list_buckets()

        if not path.startswith("/v1/"):
            raise ServiceError(400, "InvalidURI", f"Unsupported path {path}")
        bucket_name, has_key, key = path[len("/v1/"):].partition("/")

        if not has_key:
            return self._bucket_op(request, method, bucket_name, query, authenticated)

        bucket = self._bucket(bucket_name)
        self._check_anonymous(bucket, method, authenticated)
        return self._object_op(request, method, bucket, key, query)

    def _require_auth(self, authenticated: bool) -> None:
        if not authenticated:
            raise ServiceError(403, "AccessDenied", "Anonymous access is forbidden.")

    def _check_anonymous(self, bucket: StoredBucket, method: str, authenticated: bool) -> None:
        if authenticated:
            return
        if bucket.canned_acl == "public-read-write":
            return
        if bucket.canned_acl == "public-read" and method in ("GET", "HEAD"):
            return
        raise ServiceError(403, "AccessDenied", "Anonymous access is forbidden.")

    def _bucket(self, name: str) -> StoredBucket:
        bucket = self.buckets.get(name)
        if bucket is None:
            raise ServiceError(404, "NoSuchBucket", f"The specified bucket {name} does not exist.")
        return bucket

    # Buckets

    def _list_buckets(self) -> httpx.Response:
        return httpx.Response(200, json={
            "owner": {"id": OWNER_ID},
            "buckets": [
                {"name": b.name, "location": "bj", "creationDate": _iso(b.created)}
                for b in sorted(self.buckets.values(), key=lambda b: b.name)
            ],
        })

    def _bucket_op(self, request, method, name, query, authenticated) -> httpx.Response:
        self._require_auth(authenticated)

        if method == "PUT" and "acl" in query:
            return self._set_acl(request, self._bucket(name))
        if method == "PUT":
            if name in self.buckets:
                raise ServiceError(409, "BucketAlreadyExists", f"Bucket {name} exists.")
            self.buckets[name] = StoredBucket(name)
            return httpx.Response(200)
        if method == "HEAD":
            bucket = self.buckets.get(name)
            return httpx.Response(200 if bucket else 404)

        bucket = self._bucket(name)
        if method == "DELETE":
            if bucket.objects:
                raise ServiceError(409, "BucketNotEmpty", "The bucket you tried to delete is not empty.")
            del self.buckets[name]
            return httpx.Response(200)
        if method == "GET" and "acl" in query:
            return httpx.Response(200, json={"owner": {"id": OWNER_ID}, "accessControlList": self._acl_entries(bucket)})
        if method == "GET" and "location" in query:
            return httpx.Response(200, json={"locationConstraint": "bj"})
        if method == "GET" and "uploads" in query:
            return self._list_uploads(bucket, query)
        if method == "GET":
            return self._list_objects(bucket, query)
        raise ServiceError(405, "MethodNotAllowed", method)

    def _set_acl(self, request: httpx.Request, bucket: StoredBucket) -> httpx.Response:
        canned = request.headers.get("x-bce-acl")
        if canned:
            bucket.canned_acl = canned
            bucket.acl = []
            return httpx.Response(200)
        try:
            document = json.loads(request.content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ServiceError(400, "MalformedJSON", "The JSON you provided was not well-formed.")
        if not isinstance(document, dict) or not isinstance(document.get("accessControlList"), list):
            raise ServiceError(400, "MalformedJSON", "The JSON you provided was not well-formed.")
        bucket.canned_acl = "private"
        bucket.acl = document["accessControlList"]
        return httpx.Response(200)

    def _acl_entries(self, bucket: StoredBucket) -> List[dict]:
        entries = [{"grantee": [{"id": OWNER_ID}], "permission": ["FULL_CONTROL"]}]
        if bucket.canned_acl == "public-read":
            entries.append({"grantee": [{"id": "*"}], "permission": ["READ"]})
        elif bucket.canned_acl == "public-read-write":
            entries.append({"grantee": [{"id": "*"}], "permission": ["READ", "WRITE"]})
        return entries + bucket.acl

    def _list_objects(self, bucket: StoredBucket, query) -> httpx.Response:
        prefix = query.get("prefix", "")
        keys = sorted(k for k in bucket.objects if k.startswith(prefix) and k > query.get("marker", ""))
        max_keys = int(query.get("maxKeys", 1000))
        page = keys[:max_keys]
        return httpx.Response(200, json={
            "name": bucket.name,
            "prefix": prefix,
            "marker": query.get("marker", ""),
            "maxKeys": max_keys,
            "isTruncated": len(keys) > max_keys,
            "nextMarker": page[-1] if len(keys) > max_keys else None,
            "contents": [
                {
                    "key": k,
                    "size": len(bucket.objects[k].data),
                    "eTag": bucket.objects[k].etag,
                    "lastModified": _iso(bucket.objects[k].last_modified),
                    "owner": {"id": OWNER_ID},
                }
                for k in page
            ],
        })

    def _list_uploads(self, bucket: StoredBucket, query) -> httpx.Response:
        prefix = query.get("prefix", "")
        uploads = sorted(
            (u for u in bucket.uploads.values() if u.key.startswith(prefix)),
            key=lambda u: (u.key, u.initiated),
        )
        return httpx.Response(200, json={
            "bucket": bucket.name,
            "prefix": prefix,
            "keyMarker": query.get("keyMarker", ""),
            "maxUploads": int(query.get("maxUploads", 1000)),
            "isTruncated": False,
            "uploads": [
                {"key": u.key, "uploadId": u.upload_id, "owner": {"id": OWNER_ID}, "initiated": _iso(u.initiated)}
                for u in uploads
            ],
        })

    # Objects

    def _object_op(self, request, method, bucket: StoredBucket, key: str, query) -> httpx.Response:
        if method == "POST" and "uploads" in query:
            return self._initiate(request, bucket, key)
        if method == "POST" and "uploadId" in query:
            return self._complete(request, bucket, key, query["uploadId"])
        if method == "PUT" and "uploadId" in query:
            return self._upload_part(request, bucket, query["uploadId"], int(query["partNumber"]))
        if method == "GET" and "uploadId" in query:
            return self._list_parts(bucket, key, query)
        if method == "DELETE" and "uploadId" in query:
            self._upload(bucket, query["uploadId"])
            del bucket.uploads[query["uploadId"]]
            return httpx.Response(200)
        if method == "PUT" and "x-bce-copy-source" in request.headers:
            return self._copy(request, bucket, key)
        if method == "PUT":
            return self._put(request, bucket, key)
        if method in ("GET", "HEAD"):
            return self._get(request, bucket, key, head=(method == "HEAD"))
        if method == "DELETE":
            self._object(bucket, key)
            del bucket.objects[key]
            return httpx.Response(200)
        raise ServiceError(405, "MethodNotAllowed", method)

    def _object(self, bucket: StoredBucket, key: str) -> StoredObject:
        obj = bucket.objects.get(key)
        if obj is None:
            raise ServiceError(404, "NoSuchKey", f"The specified key {key} does not exist.")
        return obj

    @staticmethod
    def _check_md5(request: httpx.Request) -> str:
        digest = hashlib.md5(request.content)
        expected = request.headers.get("content-md5")
        if expected and base64.b64decode(expected) != digest.digest():
            raise ServiceError(400, "BadDigest", "The Content-MD5 you specified did not match what we received.")
        return digest.hexdigest()

    def _put(self, request: httpx.Request, bucket: StoredBucket, key: str) -> httpx.Response:
        etag = self._check_md5(request)
        bucket.objects[key] = StoredObject(
            data=request.content,
            content_type=request.headers.get("content-type", "application/octet-stream"),
            user_metadata=_meta_from_headers(request),
            etag=etag,
        )
        return httpx.Response(200, headers={"ETag": f'"{etag}"'})

    def _copy(self, request: httpx.Request, bucket: StoredBucket, key: str) -> httpx.Response:
        source = unquote(request.headers["x-bce-copy-source"]).lstrip("/")
        source_bucket, _, source_key = source.partition("/")
        src = self._object(self._bucket(source_bucket), source_key)
        if request.headers.get("x-bce-metadata-directive") == "replace":
            content_type = request.headers.get("content-type", src.content_type)
            user_metadata = _meta_from_headers(request)
        else:
            content_type = src.content_type
            user_metadata = dict(src.user_metadata)
        copied = StoredObject(src.data, content_type, user_metadata, src.etag)
        bucket.objects[key] = copied
        return httpx.Response(200, json={"eTag": copied.etag, "lastModified": _iso(copied.last_modified)})

    def _get(self, request: httpx.Request, bucket: StoredBucket, key: str, head: bool) -> httpx.Response:
        obj = self._object(bucket, key)
        headers = {
            "Content-Type": obj.content_type,
            "ETag": f'"{obj.etag}"',
            "Last-Modified": format_datetime(obj.last_modified, usegmt=True),
        }
        for name, value in obj.user_metadata.items():
            headers[f"x-bce-meta-{name}"] = value.encode("utf-8")

        data = obj.data
        status = 200
        byte_range = request.headers.get("range")
        if byte_range:
            start, _, end = byte_range[len("bytes="):].partition("-")
            start, end = int(start), min(int(end), len(data) - 1)
            if start > end:
                raise ServiceError(416, "InvalidRange", byte_range)
            headers["Content-Range"] = f"bytes {start}-{end}/{len(data)}"
            data = data[start:end + 1]
            status = 206

        headers["Content-Length"] = str(len(data))
        if head:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, headers=headers, content=data)

    # Multipart

    def _upload(self, bucket: StoredBucket, upload_id: str) -> StoredUpload:
        upload = bucket.uploads.get(upload_id)
        if upload is None:
            raise ServiceError(404, "NoSuchUpload", f"The specified upload {upload_id} does not exist.")
        return upload

    def _initiate(self, request: httpx.Request, bucket: StoredBucket, key: str) -> httpx.Response:
        upload = StoredUpload(
            upload_id=uuid.uuid4().hex,
            key=key,
            content_type=request.headers.get("content-type"),
            user_metadata=_meta_from_headers(request),
        )
        bucket.uploads[upload.upload_id] = upload
        return httpx.Response(200, json={"bucket": bucket.name, "key": key, "uploadId": upload.upload_id})

    def _upload_part(self, request: httpx.Request, bucket: StoredBucket, upload_id: str, number: int) -> httpx.Response:
        upload = self._upload(bucket, upload_id)
        etag = self._check_md5(request)
        upload.parts[number] = StoredObject(request.content, "application/octet-stream", {}, etag)
        return httpx.Response(200, headers={"ETag": f'"{etag}"'})

    def _list_parts(self, bucket: StoredBucket, key: str, query) -> httpx.Response:
        upload = self._upload(bucket, query["uploadId"])
        marker = int(query.get("partNumberMarker", 0))
        max_parts = min(int(query.get("maxParts", 1000)), 1000)
        numbers = sorted(n for n in upload.parts if n > marker)
        page = numbers[:max_parts]
        return httpx.Response(200, json={
            "bucket": bucket.name,
            "key": key,
            "uploadId": upload.upload_id,
            "initiated": _iso(upload.initiated),
            "owner": {"id": OWNER_ID},
            "partNumberMarker": marker,
            "nextPartNumberMarker": page[-1] if page else marker,
            "maxParts": max_parts,
            "isTruncated": len(numbers) > max_parts,
            "parts": [
                {
                    "partNumber": n,
                    "lastModified": _iso(upload.parts[n].last_modified),
                    "eTag": upload.parts[n].etag,
                    "size": len(upload.parts[n].data),
                }
                for n in page
            ],
        })

    def _complete(self, request: httpx.Request, bucket: StoredBucket, key: str, upload_id: str) -> httpx.Response:
        upload = self._upload(bucket, upload_id)
        try:
            requested = json.loads(request.content.decode("utf-8"))["parts"]
        except (KeyError, TypeError, ValueError):
            raise ServiceError(400, "MalformedJSON", "The JSON you provided was not well-formed.")

        data = b""
        for entry in requested:
            part = upload.parts.get(int(entry["partNumber"]))
            if part is None or part.etag != entry["eTag"].strip('"'):
                raise ServiceError(400, "InvalidPart", "One or more of the specified parts could not be found.")
            data += part.data

        user_metadata = dict(upload.user_metadata)
        user_metadata.update(_meta_from_headers(request))
        content_type = upload.content_type or "application/octet-stream"
        etag = hashlib.md5(data).hexdigest()
        bucket.objects[key] = StoredObject(data, content_type, user_metadata, etag)
        del bucket.uploads[upload_id]
        return httpx.Response(200, json={
            "location": f"http://{ENDPOINT}/v1/{bucket.name}/{key}",
            "bucket": bucket.name,
            "key": key,
            "eTag": etag,
        })


@pytest.fixture
def credentials():
    return CredentialContext(ACCESS_KEY_ID, SECRET_KEY)


@pytest.fixture
def service(credentials):
    return FakeBosService([credentials])


@pytest.fixture
def transport(service):
    return httpx.MockTransport(service)


@pytest_asyncio.fixture
async def client(credentials, transport):
    config = ClientConfiguration(endpoint=ENDPOINT, credentials=credentials)
    async with BosClient(config, transport=transport) as bos:
        await bos.create_bucket(BUCKET)
        yield bos


@pytest_asyncio.fixture
async def anonymous_client(transport):
    async with BosClient(ClientConfiguration(endpoint=ENDPOINT), transport=transport) as bos:
        yield bos
