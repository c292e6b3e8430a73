"""
Client configuration for BosStorage SDK
"""

from dataclasses import dataclass
from typing import Optional

from ._presign import MAX_PRESIGN_EXPIRATION_SECONDS, split_endpoint
from ._signer import DEFAULT_EXPIRATION_SECONDS
from .models import CredentialContext
from .multipart import MIN_PART_SIZE


@dataclass
class ClientConfiguration:
    """
    Settings shared by every request a ``BosClient`` sends.

    Args:
        endpoint: Service address, with or without scheme (e.g. "bj.bcebos.com")
        credentials: Signing credentials; None sends anonymous requests
        protocol: Scheme used when the endpoint has none
        timeout: Request timeout in seconds
        max_connections: Connection pool size
        signature_expiration_seconds: Validity window of header signatures
        max_presign_expiration_seconds: Upper bound for presigned URL expiration
        stream_threshold: Bodies larger than this are streamed in chunks
        chunk_size: Chunk size for streamed uploads and downloads
        min_part_size: Minimum size of every multipart part except the last
    """
    endpoint: str = "bj.bcebos.com"
    credentials: Optional[CredentialContext] = None
    protocol: str = "http"
    timeout: float = 30.0
    max_connections: int = 100
    signature_expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS
    max_presign_expiration_seconds: int = MAX_PRESIGN_EXPIRATION_SECONDS
    stream_threshold: int = 8 * 1024 * 1024
    chunk_size: int = 64 * 1024
    min_part_size: int = MIN_PART_SIZE

    def __post_init__(self):
        if self.protocol not in ("http", "https"):
            raise ValueError(f"Unsupported protocol: {self.protocol}")

    @property
    def scheme(self) -> str:
        return split_endpoint(self.endpoint, self.protocol)[0]

    @property
    def host(self) -> str:
        return split_endpoint(self.endpoint, self.protocol)[1]

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"
