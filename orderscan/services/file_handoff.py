"""Hand an uploaded file from the classify request to the extract request.

classify: prepare() -> (vision call) -> stash() -> token
extract:  redeem(token) -> (vision call) -> release()
"""
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional

from orderscan.core.cache import CacheEntry, FileCache, estimate_payload_size, generate_file_id
from orderscan.core.errors import FileCacheExpiredError, InvalidUploadError, TokenExpiredError
from orderscan.core.maintenance import CacheMaintenance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedDocument:
    data_base64: str
    mime_type: str
    filename: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return estimate_payload_size(self.data_base64)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str, filename: Optional[str] = None) -> "UploadedDocument":
        if not data:
            raise InvalidUploadError(error="Empty file", action="Select a non-empty PDF or image file.")
        return cls(base64.b64encode(data).decode("ascii"), mime_type, filename)

    @classmethod
    def from_base64(cls, data_base64: str, mime_type: str) -> "UploadedDocument":
        # Accept data URLs ("data:<mime>;base64,<data>") as sent by browsers.
        if data_base64.startswith("data:") and "," in data_base64:
            data_base64 = data_base64.split(",", 1)[1]
        data_base64 = "".join(data_base64.split())
        if not data_base64:
            raise InvalidUploadError(error="fileBase64 is required")
        try:
            base64.b64decode(data_base64, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidUploadError(error="fileBase64 is not valid base64")
        return cls(data_base64, mime_type)


class FileHandoff:
    def __init__(self, cache: FileCache, codec, maintenance: CacheMaintenance, single_use: bool = False):
        self.cache = cache
        self.codec = codec
        self.maintenance = maintenance
        self.single_use = single_use

    def prepare(self, document: UploadedDocument) -> None:
        """Fail fast before any external call: size cap, then server secret."""
        self.cache.ensure_fits(document.size_bytes)
        self.codec.secret.get()

    def stash(self, document: UploadedDocument) -> str:
        file_id = generate_file_id()
        self.cache.insert(file_id, document.data_base64, document.mime_type)
        return self.codec.issue(file_id, document.mime_type)

    def redeem(self, token: str) -> CacheEntry:
        try:
            claims = self.codec.redeem(token)
        except TokenExpiredError as e:
            # Authentic but stale: same remedy as an expired cache entry.
            self.cache.discard(e.file_id, "expired")
            raise FileCacheExpiredError() from e
        entry = self.cache.lookup(claims.file_id)
        if entry is None:
            logger.info(f"Cached file {claims.file_id} has expired or was evicted; re-upload required")
            raise FileCacheExpiredError()
        return entry

    def release(self, entry: CacheEntry) -> None:
        if not self.single_use:
            return
        try:
            self.cache.discard(entry.key)
        except Exception:
            logger.exception(f"Failed to release cached file {entry.key}")
