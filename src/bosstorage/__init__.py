"""
BosStorage Python SDK - async client for BOS-compatible object storage
"""

__version__ = "1.0.0"

from .client import BosClient
from .config import ClientConfiguration
from ._mime import get_mimetype
from ._presign import PresignedUrlBuilder
from ._signer import RequestSigner, SignatureVerifier
from .models import (
    Bucket,
    BucketAclResult,
    CanonicalRequest,
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
    SignatureMaterial,
    UploadPartResult,
)
from .multipart import (
    ListPartsResult,
    PartETag,
    PartInfo,
    UploadSession,
    UploadStatus,
)
from .error import (
    ErrorKind,
    BosStorageException,
    InvalidCredentialException,
    AuthenticationException,
    AccessDeniedException,
    BucketNotFoundException,
    ObjectNotFoundException,
    UploadNotFoundException,
    InvalidPartException,
    EntityTooSmallException,
    InvalidExpirationException,
    ExpirationTooLargeException,
    ClockSkewException,
    InvalidSessionStateException,
    InvalidArgumentException,
    ServerException,
)

__all__ = [
    "BosClient",
    "ClientConfiguration",
    "get_mimetype",
    "PresignedUrlBuilder",
    "RequestSigner",
    "SignatureVerifier",
    "Bucket",
    "BucketAclResult",
    "CanonicalRequest",
    "CompleteMultipartUploadResult",
    "CopyObjectResult",
    "CredentialContext",
    "Grant",
    "InitiateMultipartUploadResult",
    "ListMultipartUploadsResult",
    "ListObjectsResult",
    "MultipartUploadSummary",
    "ObjectMetadata",
    "ObjectSummary",
    "PresignedUrlResult",
    "PutObjectResult",
    "SignatureMaterial",
    "UploadPartResult",
    "ListPartsResult",
    "PartETag",
    "PartInfo",
    "UploadSession",
    "UploadStatus",
    "ErrorKind",
    "BosStorageException",
    "InvalidCredentialException",
    "AuthenticationException",
    "AccessDeniedException",
    "BucketNotFoundException",
    "ObjectNotFoundException",
    "UploadNotFoundException",
    "InvalidPartException",
    "EntityTooSmallException",
    "InvalidExpirationException",
    "ExpirationTooLargeException",
    "ClockSkewException",
    "InvalidSessionStateException",
    "InvalidArgumentException",
    "ServerException",
]
