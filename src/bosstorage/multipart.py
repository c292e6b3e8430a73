"""
Multipart upload session tracking for BosStorage SDK

An ``UploadSession`` is the client-side record of one multipart upload: its
lifecycle state and the inventory of parts uploaded so far. Part uploads for
the same session may run concurrently from several threads or tasks; writes
are serialized per part number only, so unrelated parts never wait on each
other. Completion waits for in-flight part writes and blocks new ones while
the completion request is outstanding.
"""

import hashlib
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Union

from .error import (
    EntityTooSmallException,
    InvalidArgumentException,
    InvalidPartException,
    InvalidSessionStateException,
    UploadNotFoundException,
)
from .models import ObjectMetadata

MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000
MIN_PART_SIZE = 5 * 1024 * 1024
MAX_PARTS_PER_PAGE = 1000

logger = logging.getLogger(__name__)


class UploadStatus(str, Enum):
    INITIATED = "Initiated"
    PARTS_UPLOADING = "PartsUploading"
    COMPLETED = "Completed"
    ABORTED = "Aborted"

    @property
    def terminal(self) -> bool:
        return self in (UploadStatus.COMPLETED, UploadStatus.ABORTED)


@dataclass(frozen=True)
class PartInfo:
    """One uploaded part: its number, MD5 ETag, size and upload time."""
    part_number: int
    etag: str
    size: int
    last_modified: datetime


@dataclass(frozen=True)
class PartETag:
    """A ``{partNumber, eTag}`` pair supplied when completing an upload."""
    part_number: int
    etag: str


@dataclass
class ListPartsResult:
    """Represents one page of a part listing."""
    bucket_name: str
    object_name: str
    upload_id: str
    part_number_marker: int = 0
    next_part_number_marker: int = 0
    max_parts: int = MAX_PARTS_PER_PAGE
    is_truncated: bool = False
    parts: List[PartInfo] = field(default_factory=list)
    owner_id: Optional[str] = None
    initiated: Optional[datetime] = None


def normalize_etag(etag: Optional[str]) -> str:
    return (etag or "").strip().strip('"').lower()


def check_part_number(part_number: int) -> None:
    if isinstance(part_number, bool) or not isinstance(part_number, int):
        raise InvalidArgumentException(f"Part number must be an integer, got {part_number!r}.")
    if not MIN_PART_NUMBER <= part_number <= MAX_PART_NUMBER:
        raise InvalidArgumentException(
            f"Part number must be between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}, got {part_number}."
        )


def check_max_parts(max_parts: int) -> int:
    if max_parts < 1:
        raise InvalidArgumentException(f"maxParts must be positive, got {max_parts}.")
    return min(max_parts, MAX_PARTS_PER_PAGE)


class UploadSession:
    """
    Lifecycle and part inventory of one multipart upload.

    Status only moves forward: Initiated -> PartsUploading -> Completed or
    Aborted. Terminal sessions reject every further mutation.
    """

    def __init__(
        self,
        upload_id: str,
        bucket: str,
        key: str,
        metadata: Optional[ObjectMetadata] = None,
        min_part_size: int = MIN_PART_SIZE,
        initiated: Optional[datetime] = None,
    ):
        self.upload_id = upload_id
        self.bucket = bucket
        self.key = key
        self.metadata = metadata or ObjectMetadata()
        self.min_part_size = min_part_size
        self.initiated = initiated or datetime.now(UTC)
        self.final_metadata: Optional[ObjectMetadata] = None

        self._status = UploadStatus.INITIATED
        self._parts: Dict[int, PartInfo] = {}
        self._part_locks: Dict[int, threading.Lock] = {}
        self._cond = threading.Condition()
        self._writers = 0
        self._completing = False

    def __repr__(self) -> str:
        return f"UploadSession(upload_id={self.upload_id!r}, bucket={self.bucket!r}, key={self.key!r}, status={self._status.value})"

    @property
    def status(self) -> UploadStatus:
        return self._status

    @property
    def part_count(self) -> int:
        return len(self._parts)

    def _part_lock(self, part_number: int) -> threading.Lock:
        # Caller holds self._cond.
        lock = self._part_locks.get(part_number)
        if lock is None:
            lock = self._part_locks[part_number] = threading.Lock()
        return lock

    def record_part(
        self,
        part_number: int,
        data: Optional[bytes] = None,
        etag: Optional[str] = None,
        size: Optional[int] = None,
        last_modified: Optional[datetime] = None,
    ) -> PartInfo:
        """Record an uploaded part, replacing any earlier upload of the same number.

        The ETag is the server-reported value when given, otherwise the MD5
        of ``data``. If both are given they must agree.
        """
        check_part_number(part_number)
        if data is None and etag is None:
            raise InvalidArgumentException("A part needs either its bytes or its ETag.")

        if data is not None:
            local_etag = hashlib.md5(data).hexdigest()
            if etag is not None and normalize_etag(etag) != local_etag:
                raise InvalidPartException(
                    f"Part {part_number} ETag {etag} does not match the MD5 of the uploaded bytes."
                )
            etag = local_etag
            size = len(data)
        if size is None or size < 0:
            raise InvalidArgumentException(f"Part {part_number} needs a non-negative size.")

        info = PartInfo(
            part_number=part_number,
            etag=normalize_etag(etag),
            size=size,
            last_modified=last_modified or datetime.now(UTC),
        )

        with self._cond:
            self._ensure_writable()
            lock = self._part_lock(part_number)
            self._writers += 1
        try:
            with lock:
                self._parts[part_number] = info
        finally:
            with self._cond:
                self._writers -= 1
                if self._status is UploadStatus.INITIATED:
                    self._status = UploadStatus.PARTS_UPLOADING
                    logger.info("Upload %s for %s/%s is receiving parts", self.upload_id, self.bucket, self.key)
                self._cond.notify_all()

        logger.debug("Recorded part %s of upload %s (%s bytes)", part_number, self.upload_id, info.size)
        return info

    def check_writable(self) -> None:
        """Fail fast when no more parts can be recorded."""
        with self._cond:
            self._ensure_writable()

    def _ensure_writable(self) -> None:
        if self._status.terminal:
            raise UploadNotFoundException(
                f"Upload {self.upload_id} is {self._status.value.lower()}; no more parts can be uploaded."
            )
        if self._completing:
            raise InvalidSessionStateException(
                f"Upload {self.upload_id} is being completed; no more parts can be uploaded."
            )

    def get_part(self, part_number: int) -> Optional[PartInfo]:
        return self._parts.get(part_number)

    def list_parts(self, part_number_marker: int = 0, max_parts: int = MAX_PARTS_PER_PAGE) -> ListPartsResult:
        """Return one page of parts in ascending part number order."""
        if self._status.terminal:
            raise UploadNotFoundException(f"Upload {self.upload_id} is {self._status.value.lower()}.")
        max_parts = check_max_parts(max_parts)

        snapshot = dict(self._parts)
        numbers = sorted(n for n in snapshot if n > part_number_marker)
        page = [snapshot[n] for n in numbers[:max_parts]]

        return ListPartsResult(
            bucket_name=self.bucket,
            object_name=self.key,
            upload_id=self.upload_id,
            part_number_marker=part_number_marker,
            next_part_number_marker=page[-1].part_number if page else part_number_marker,
            max_parts=max_parts,
            is_truncated=len(numbers) > max_parts,
            parts=page,
            initiated=self.initiated,
        )

    def validate_completion(self, part_etags: Iterable[Union[PartETag, dict]]) -> List[PartInfo]:
        """Cross-check the caller's part list against the recorded inventory.

        Returns the recorded parts in ascending part number order.
        """
        requested = [as_part_etag(p) for p in part_etags]
        if not requested:
            raise InvalidPartException("At least one part must be specified.")

        by_number: Dict[int, PartETag] = {}
        for part in requested:
            if part.part_number in by_number:
                raise InvalidPartException(f"Part {part.part_number} is listed more than once.")
            by_number[part.part_number] = part

        snapshot = dict(self._parts)
        missing = sorted(set(snapshot) - set(by_number))
        if missing:
            raise InvalidPartException(f"Uploaded parts {missing} are missing from the part list.")

        ordered: List[PartInfo] = []
        for number in sorted(by_number):
            recorded = snapshot.get(number)
            if recorded is None:
                raise InvalidPartException(f"Part {number} has not been uploaded.")
            if normalize_etag(by_number[number].etag) != recorded.etag:
                raise InvalidPartException(
                    f"Part {number} ETag {by_number[number].etag} does not match the uploaded part."
                )
            ordered.append(recorded)

        for part in ordered[:-1]:
            if part.size < self.min_part_size:
                raise EntityTooSmallException(
                    f"Part {part.part_number} has size {part.size} bytes, "
                    f"below the minimum of {self.min_part_size} bytes."
                )
        return ordered

    def merge_metadata(self, metadata: Optional[ObjectMetadata] = None) -> ObjectMetadata:
        """Final object metadata: completion user metadata overrides initiation
        per key; the content type set at initiation wins."""
        user_metadata = dict(self.metadata.user_metadata)
        content_type = self.metadata.content_type
        if metadata is not None:
            user_metadata.update(metadata.user_metadata)
            content_type = content_type or metadata.content_type

        return ObjectMetadata(
            object_name=self.key,
            bucket_name=self.bucket,
            content_type=content_type,
            content_length=sum(p.size for p in self._parts.values()),
            user_metadata=user_metadata,
        )

    def begin_completion(
        self,
        part_etags: Iterable[Union[PartETag, dict]],
        metadata: Optional[ObjectMetadata] = None,
    ) -> ObjectMetadata:
        """Block new part writes, wait for in-flight ones and validate the part list.

        Returns the final object metadata. Every successful call must be
        followed by ``finish_completion``. Waiting blocks the calling thread,
        so async callers run this in an executor.
        """
        with self._cond:
            if self._status.terminal:
                raise InvalidSessionStateException(
                    f"Upload {self.upload_id} is already {self._status.value.lower()}."
                )
            if self._completing:
                raise InvalidSessionStateException(f"Upload {self.upload_id} is already being completed.")
            self._completing = True
            while self._writers:
                self._cond.wait()

        try:
            self.validate_completion(part_etags)
            return self.merge_metadata(metadata)
        except BaseException:
            self.finish_completion(None)
            raise

    def finish_completion(self, final: Optional[ObjectMetadata]) -> None:
        """End a completion started by ``begin_completion``.

        With ``final`` the session becomes Completed; with None it reopens
        for part uploads.
        """
        with self._cond:
            self._completing = False
            if final is not None:
                self._status = UploadStatus.COMPLETED
                self.final_metadata = final
                self._part_locks.clear()
            self._cond.notify_all()

        if final is not None:
            logger.info("Completed upload %s for %s/%s", self.upload_id, self.bucket, self.key)

    @contextmanager
    def completing(
        self,
        part_etags: Iterable[Union[PartETag, dict]],
        metadata: Optional[ObjectMetadata] = None,
    ) -> Iterator[ObjectMetadata]:
        """Hold the session in a completing state around the completion request.

        The session becomes Completed when the block exits normally. If the
        block raises, the session stays PartsUploading.
        """
        final = self.begin_completion(part_etags, metadata)
        try:
            yield final
        except BaseException:
            self.finish_completion(None)
            raise
        self.finish_completion(final)

    def complete(
        self,
        part_etags: Iterable[Union[PartETag, dict]],
        metadata: Optional[ObjectMetadata] = None,
    ) -> ObjectMetadata:
        with self.completing(part_etags, metadata) as final:
            return final

    def abort(self) -> None:
        """Discard every recorded part and make the upload id permanently invalid.

        Blocks until in-flight part writes finish.
        """
        with self._cond:
            if self._status.terminal:
                raise InvalidSessionStateException(
                    f"Upload {self.upload_id} is already {self._status.value.lower()}."
                )
            if self._completing:
                raise InvalidSessionStateException(f"Upload {self.upload_id} is being completed.")
            while self._writers:
                self._cond.wait()
            self._status = UploadStatus.ABORTED
            self._parts.clear()
            self._part_locks.clear()

        logger.info("Aborted upload %s for %s/%s", self.upload_id, self.bucket, self.key)


def as_part_etag(part: Union[PartETag, dict]) -> PartETag:
    if isinstance(part, PartETag):
        return part
    try:
        number = part.get("part_number", part.get("partNumber"))
        etag = part.get("etag", part.get("eTag"))
        return PartETag(part_number=int(number), etag=str(etag))
    except (AttributeError, TypeError, ValueError):
        raise InvalidPartException(f"Malformed part entry: {part!r}")
