"""fileId tokens handed to the client between classify and extract.

Two codecs share one interface:

- ``HmacTokenCodec``: ``<file_id>.<hex HMAC-SHA256>``. Tamper-evident, the
  file id itself is visible.
- ``AeadTokenCodec``: ``<iv>.<tag>.<ciphertext>`` (unpadded base64url) from
  AES-256-GCM over ``{"fileId", "mimeType", "ts"}``. Opaque and
  tamper-evident, and carries its own expiry independent of the cache TTL.

Both resolve the server secret lazily through ``TokenSecret`` and report
every rejection as ``TokenAuthenticationError``. An authentic AEAD token past
its lifetime raises the ``TokenExpiredError`` subclass, which still names the
file it was issued for.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from orderscan.core.errors import ConfigurationError, TokenAuthenticationError, TokenExpiredError
from orderscan.core.metrics import FILE_TOKEN_REJECTIONS

logger = logging.getLogger(__name__)

DEV_INSECURE_SECRET = "dev-insecure-file-token-secret"

NONCE_BYTES = 12  # 96-bit GCM nonce
TAG_BYTES = 16
HKDF_INFO = b"orderscan file token v1"


@dataclass(frozen=True)
class FileClaims:
    file_id: str
    mime_type: Optional[str] = None
    issued_at: Optional[float] = None


class TokenSecret:
    """Server secret, resolved on first use and then cached for the process."""

    def __init__(self, value: Optional[str], allow_insecure_default: bool = False):
        self._value = value
        self._allow_insecure_default = allow_insecure_default
        self._resolved: Optional[bytes] = None
        self._lock = threading.Lock()

    def get(self) -> bytes:
        if self._resolved is not None:
            return self._resolved
        with self._lock:
            if self._resolved is None:
                self._resolved = self._resolve()
        return self._resolved

    def _resolve(self) -> bytes:
        if self._value:
            return self._value.encode("utf-8")
        if not self._allow_insecure_default:
            logger.error("API_SECRET is missing; refusing to issue or verify file tokens")
            raise ConfigurationError()
        logger.warning(
            "API_SECRET is not set. Using the INSECURE development secret for file tokens. "
            "Never run this configuration outside local development."
        )
        return DEV_INSECURE_SECRET.encode("utf-8")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    """Strict unpadded base64url decode.

    Re-encoding must reproduce the segment, so flipping unused trailing bits
    cannot produce a second valid spelling of the same token.
    """
    try:
        raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except (binascii.Error, ValueError) as e:
        raise TokenAuthenticationError(reason="malformed") from e
    if _b64encode(raw) != segment:
        raise TokenAuthenticationError(reason="malformed")
    return raw


def _reject(reason: str) -> TokenAuthenticationError:
    FILE_TOKEN_REJECTIONS.labels(reason=reason).inc()
    logger.warning(f"Rejected fileId token: {reason}")
    return TokenAuthenticationError(reason=reason)


class HmacTokenCodec:
    def __init__(self, secret: TokenSecret):
        self.secret = secret

    def _sign(self, file_id: bytes) -> str:
        return hmac.new(self.secret.get(), file_id, hashlib.sha256).hexdigest()

    def issue(self, file_id: str, mime_type: Optional[str] = None) -> str:
        if not file_id:
            raise ValueError("file_id must not be empty")
        return f"{file_id}.{self._sign(file_id.encode('utf-8'))}"

    def redeem(self, token: str) -> FileClaims:
        if not isinstance(token, str):
            raise _reject("shape")
        parts = token.split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise _reject("shape")
        file_id, signature = parts
        try:
            raw_id = file_id.encode("utf-8")
            given = signature.encode("ascii")
        except UnicodeEncodeError:
            raise _reject("malformed")
        expected = self._sign(raw_id)
        if not hmac.compare_digest(expected.encode("ascii"), given):
            raise _reject("signature")
        return FileClaims(file_id=file_id)


class AeadTokenCodec:
    def __init__(
        self,
        secret: TokenSecret,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret
        self.ttl = ttl_seconds
        self._clock = clock
        self._aead: Optional[AESGCM] = None
        self._lock = threading.Lock()

    def _cipher(self) -> AESGCM:
        if self._aead is None:
            with self._lock:
                if self._aead is None:
                    key = HKDF(
                        algorithm=hashes.SHA256(),
                        length=32,
                        salt=None,
                        info=HKDF_INFO,
                    ).derive(self.secret.get())
                    self._aead = AESGCM(key)
        return self._aead

    def issue(self, file_id: str, mime_type: Optional[str] = None) -> str:
        if not file_id:
            raise ValueError("file_id must not be empty")
        payload = json.dumps(
            {"fileId": file_id, "mimeType": mime_type, "ts": int(self._clock() * 1000)},
            separators=(",", ":"),
        ).encode("utf-8")
        iv = os.urandom(NONCE_BYTES)
        sealed = self._cipher().encrypt(iv, payload, None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return ".".join(_b64encode(part) for part in (iv, tag, ciphertext))

    def redeem(self, token: str) -> FileClaims:
        if not isinstance(token, str):
            raise _reject("shape")
        parts = token.split(".")
        if len(parts) != 3 or not all(parts):
            raise _reject("shape")
        try:
            iv, tag, ciphertext = (_b64decode(p) for p in parts)
        except TokenAuthenticationError:
            raise _reject("malformed")
        if len(iv) != NONCE_BYTES or len(tag) != TAG_BYTES or not ciphertext:
            raise _reject("malformed")

        try:
            plaintext = self._cipher().decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise _reject("signature")

        try:
            data = json.loads(plaintext)
            file_id = data["fileId"]
            issued_ms = data["ts"]
            mime_type = data.get("mimeType")
        except (ValueError, KeyError, TypeError):
            raise _reject("payload")
        if not isinstance(file_id, str) or not file_id or not isinstance(issued_ms, int):
            raise _reject("payload")

        issued_at = issued_ms / 1000
        if self._clock() - issued_at > self.ttl:
            FILE_TOKEN_REJECTIONS.labels(reason="expired").inc()
            logger.info(f"fileId token for {file_id} is past its lifetime")
            raise TokenExpiredError(file_id)
        return FileClaims(file_id=file_id, mime_type=mime_type, issued_at=issued_at)


def build_token_codec(settings, clock: Callable[[], float] = time.time):
    secret = TokenSecret(settings.api_secret, allow_insecure_default=settings.is_development)
    mode = settings.file_token_mode.strip().lower()
    if mode == "hmac":
        return HmacTokenCodec(secret)
    if mode == "aead":
        return AeadTokenCodec(secret, ttl_seconds=settings.file_token_ttl_seconds, clock=clock)
    raise ConfigurationError(error=f"Server misconfiguration: unknown file_token_mode '{settings.file_token_mode}'")
