"""
Data models for BosStorage SDK
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Dict


@dataclass(frozen=True)
class CredentialContext:
    """Access key pair, plus an optional session token, used to sign requests."""
    access_key_id: str
    secret_key: str
    session_token: Optional[str] = None

    def __repr__(self) -> str:
        return f"CredentialContext(access_key_id={self.access_key_id!r})"


@dataclass(frozen=True)
class CanonicalRequest:
    """Deterministic representation of a request used as signing input."""
    method: str
    canonical_uri: str
    canonical_query_string: str
    canonical_headers: str
    signed_header_names: List[str]

    def string_to_sign(self) -> str:
        return "\n".join([
            self.method,
            self.canonical_uri,
            self.canonical_query_string,
            self.canonical_headers,
        ])


@dataclass(frozen=True)
class SignatureMaterial:
    """Timestamp, validity window and signature of one signed request."""
    access_key_id: str
    timestamp: datetime
    expiration_seconds: int
    signed_header_names: List[str]
    signature: str

    @property
    def expires_at(self) -> datetime:
        return self.timestamp + timedelta(seconds=self.expiration_seconds)


@dataclass
class Bucket:
    """Represents a bucket in BOS."""
    name: str
    location: Optional[str] = None
    creation_date: Optional[datetime] = None


@dataclass
class ObjectMetadata:
    """Represents object metadata."""
    object_name: Optional[str] = None
    bucket_name: Optional[str] = None
    content_length: Optional[int] = None
    content_type: Optional[str] = None
    content_md5: Optional[str] = None
    content_range: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    user_metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class ObjectSummary:
    key: str
    size: int = 0
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    owner_id: Optional[str] = None


@dataclass
class ListObjectsResult:
    """Represents the result of a list objects operation."""
    bucket_name: str
    objects: List[ObjectSummary] = field(default_factory=list)
    prefix: Optional[str] = None
    delimiter: Optional[str] = None
    marker: Optional[str] = None
    next_marker: Optional[str] = None
    max_keys: int = 1000
    is_truncated: bool = False
    common_prefixes: List[str] = field(default_factory=list)


@dataclass
class PutObjectResult:
    """Represents the result of a put object operation."""
    bucket_name: str
    object_name: str
    etag: str


@dataclass
class CopyObjectResult:
    bucket_name: str
    object_name: str
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass
class PresignedUrlResult:
    """Represents a presigned URL response."""
    url: str
    expires_at: datetime


@dataclass
class Grant:
    """One access control entry: the grantee ids and their permissions."""
    grantee: List[str]
    permission: List[str]


@dataclass
class BucketAclResult:
    """Represents bucket access control information."""
    bucket_name: str
    owner_id: Optional[str] = None
    access_control_list: List[Grant] = field(default_factory=list)


@dataclass
class InitiateMultipartUploadResult:
    bucket_name: str
    object_name: str
    upload_id: str


@dataclass
class UploadPartResult:
    part_number: int
    etag: str


@dataclass
class CompleteMultipartUploadResult:
    bucket_name: str
    object_name: str
    etag: Optional[str] = None
    location: Optional[str] = None


@dataclass
class MultipartUploadSummary:
    object_name: str
    upload_id: str
    owner_id: Optional[str] = None
    initiated: Optional[datetime] = None


@dataclass
class ListMultipartUploadsResult:
    bucket_name: str
    uploads: List[MultipartUploadSummary] = field(default_factory=list)
    prefix: Optional[str] = None
    key_marker: Optional[str] = None
    next_key_marker: Optional[str] = None
    max_uploads: int = 1000
    is_truncated: bool = False
