"""
Remote object store access for Drop Uploader.

The upload engine depends on two operations only:

  put(remote_name, stream, only_if_absent=True) -> PutResult
  info(remote_name) -> ObjectInfo

``S3RemoteStore`` implements them with boto3.  The put is conditional
(``If-None-Match: *``) so an existing object is reported as
``PutStatus.PRECONDITION_FAILED`` instead of being overwritten, and
objects are written with a SHA-256 checksum so ``info`` can later tell
whether the remote content equals a local file.
"""

from __future__ import annotations

import base64
import binascii
import enum
import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from drop_upload.errors import FatalRemoteError, RemoteStoreError

logger = logging.getLogger(__name__)

# Error codes that will not go away by retrying the same request.
_FATAL_ERROR_CODES = frozenset({
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
    "ExpiredToken",
    "InvalidToken",
})

_PRECONDITION_CODES = frozenset({"PreconditionFailed", "412"})


class PutStatus(enum.Enum):
    OK = "ok"
    PRECONDITION_FAILED = "precondition_failed"
    ERROR = "error"


@dataclass(frozen=True)
class PutResult:
    """Three-way outcome of a conditional put."""
    status: PutStatus
    error: str = ""

    @classmethod
    def ok(cls) -> "PutResult":
        return cls(PutStatus.OK)

    @classmethod
    def precondition_failed(cls) -> "PutResult":
        return cls(PutStatus.PRECONDITION_FAILED, "object already exists")

    @classmethod
    def failed(cls, error: str) -> "PutResult":
        return cls(PutStatus.ERROR, error)


@dataclass(frozen=True)
class ObjectInfo:
    """Content metadata of a remote object.

    ``checksum`` is a lowercase hex digest computed with ``algorithm``
    (a :mod:`hashlib` name such as ``"sha256"`` or ``"md5"``).
    """
    name: str
    algorithm: str
    checksum: str
    size: int | None = None


class RemoteStore(Protocol):
    """Interface the dispatcher and conflict resolver depend on."""

    def put(
        self, remote_name: str, stream: BinaryIO, only_if_absent: bool = True
    ) -> PutResult:
        """Upload *stream*; never overwrite when *only_if_absent* is set."""
        ...

    def info(self, remote_name: str) -> ObjectInfo:
        """Return content metadata; raise RemoteStoreError on failure."""
        ...


def b64_to_hex(value: str) -> str:
    """Convert a base64 digest (as S3 reports checksums) to hex."""
    try:
        return base64.b64decode(value, validate=True).hex()
    except (binascii.Error, ValueError) as exc:
        raise RemoteStoreError(f"bad base64 checksum {value!r}: {exc}") from exc


def remote_name_for(prefix: str, filename: str) -> str:
    """Join the configured remote prefix and a local file name into a key."""
    prefix = prefix.strip("/")
    return f"{prefix}/{filename}" if prefix else filename


def _error_code(exc: ClientError) -> str:
    err = exc.response.get("Error", {})
    code = str(err.get("Code", ""))
    if not code:
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        code = str(status or "")
    return code


def _http_status(exc: ClientError) -> int | None:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


class S3RemoteStore:
    """
    RemoteStore backed by an S3 (or S3-compatible) bucket.

    Parameters
    ----------
    bucket : str
        Target bucket.
    client : botocore S3 client, optional
        Pre-built client (tests pass a stubbed one).  When omitted a
        client is created from the remaining arguments.
    region, endpoint_url, profile :
        Session and endpoint settings; *profile* selects a named boto3
        profile, *endpoint_url* points at an S3-compatible service.
    connect_timeout : float
        Connection-establishment timeout in seconds.
    max_attempts : int
        botocore retry budget for a single request.
    """

    def __init__(
        self,
        bucket: str,
        client: Any = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        profile: str | None = None,
        connect_timeout: float = 2.0,
        max_attempts: int = 3,
    ):
        self.bucket = bucket
        if client is None:
            try:
                client = self._create_client(
                    region, endpoint_url, profile, connect_timeout, max_attempts
                )
            except BotoCoreError as exc:
                raise FatalRemoteError(f"cannot create S3 client: {exc}") from exc
        self._client = client

    @classmethod
    def from_config(cls, cfg: Any) -> "S3RemoteStore":
        """Build a store from a :class:`drop_upload.config.Config`."""
        return cls(
            bucket=cfg.remote_bucket,
            region=cfg.s3_region,
            endpoint_url=cfg.s3_endpoint_url,
            profile=cfg.s3_profile,
            connect_timeout=cfg.s3_connect_timeout,
            max_attempts=cfg.s3_max_attempts,
        )

    @staticmethod
    def _create_client(
        region: str | None,
        endpoint_url: str | None,
        profile: str | None,
        connect_timeout: float,
        max_attempts: int,
    ) -> Any:
        if profile:
            session = boto3.session.Session(profile_name=profile)
            logger.info("Using AWS profile: %s", profile)
        else:
            session = boto3.session.Session()

        client_kwargs: dict[str, Any] = {
            "region_name": region,
            "config": BotoConfig(
                connect_timeout=connect_timeout,
                retries={"max_attempts": max_attempts, "mode": "standard"},
            ),
        }
        if endpoint_url:
            logger.info("Using custom endpoint: %s", endpoint_url)
            client_kwargs["endpoint_url"] = endpoint_url
        return session.client("s3", **client_kwargs)

    # ---- operations ----

    def put(
        self, remote_name: str, stream: BinaryIO, only_if_absent: bool = True
    ) -> PutResult:
        """
        Upload *stream* to ``s3://bucket/remote_name``.

        Local read errors (OSError) from *stream* propagate to the caller.
        Raises FatalRemoteError for credential or bucket problems.
        """
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": remote_name,
            "Body": stream,
            "ChecksumAlgorithm": "SHA256",
        }
        if only_if_absent:
            kwargs["IfNoneMatch"] = "*"

        try:
            self._client.put_object(**kwargs)
        except ClientError as exc:
            code = _error_code(exc)
            if code in _PRECONDITION_CODES or _http_status(exc) == 412:
                return PutResult.precondition_failed()
            if code in _FATAL_ERROR_CODES:
                raise FatalRemoteError(f"put {remote_name}: {code}: {exc}") from exc
            return PutResult.failed(f"{code}: {exc}")
        except (NoCredentialsError, PartialCredentialsError) as exc:
            raise FatalRemoteError(f"no usable AWS credentials: {exc}") from exc
        except BotoCoreError as exc:
            return PutResult.failed(str(exc))
        return PutResult.ok()

    def info(self, remote_name: str) -> ObjectInfo:
        """
        Return the content checksum of ``s3://bucket/remote_name``.

        Prefers the stored SHA-256 checksum; falls back to the ETag,
        which is the MD5 of the content for single-part uploads.
        Raises RemoteStoreError when neither is usable.
        """
        try:
            head = self._client.head_object(
                Bucket=self.bucket, Key=remote_name, ChecksumMode="ENABLED"
            )
        except ClientError as exc:
            code = _error_code(exc)
            if code in _FATAL_ERROR_CODES:
                raise FatalRemoteError(f"info {remote_name}: {code}: {exc}") from exc
            raise RemoteStoreError(f"info {remote_name}: {code}: {exc}") from exc
        except (NoCredentialsError, PartialCredentialsError) as exc:
            raise FatalRemoteError(f"no usable AWS credentials: {exc}") from exc
        except BotoCoreError as exc:
            raise RemoteStoreError(f"info {remote_name}: {exc}") from exc

        size = head.get("ContentLength")
        sha = head.get("ChecksumSHA256")
        # A composite (per-part) checksum ends in "-<parts>" and cannot be
        # compared with a whole-file digest.
        if sha and "-" not in sha:
            return ObjectInfo(remote_name, "sha256", b64_to_hex(sha), size)

        etag = str(head.get("ETag", "")).strip('"')
        if etag and "-" not in etag:
            return ObjectInfo(remote_name, "md5", etag.lower(), size)

        raise RemoteStoreError(
            f"info {remote_name}: no whole-object checksum available (ETag {etag!r})"
        )
