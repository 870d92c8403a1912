"""Tests for the S3 remote store adapter (botocore Stubber, no network)."""

from __future__ import annotations

import base64
import hashlib
import io

import boto3
import pytest
from botocore.stub import ANY, Stubber

from drop_upload.errors import FatalRemoteError, RemoteStoreError
from drop_upload.remote import (
    PutStatus,
    S3RemoteStore,
    b64_to_hex,
    remote_name_for,
)

BUCKET = "archive"


@pytest.fixture
def s3_client():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


@pytest.fixture
def remote(s3_client) -> S3RemoteStore:
    client, _ = s3_client
    return S3RemoteStore(BUCKET, client=client)


def test_remote_name_for() -> None:
    assert remote_name_for("", "a.log") == "a.log"
    assert remote_name_for("logs", "a.log") == "logs/a.log"
    assert remote_name_for("/logs/web1/", "a.log") == "logs/web1/a.log"


def test_b64_to_hex() -> None:
    digest = hashlib.sha256(b"abc").digest()
    assert b64_to_hex(base64.b64encode(digest).decode()) == digest.hex()
    with pytest.raises(RemoteStoreError):
        b64_to_hex("not base64!")


class TestPut:
    def _expect_put(self, stubber, **response):
        stubber.add_response(
            "put_object",
            response or {"ETag": '"abc"'},
            {
                "Bucket": BUCKET,
                "Key": "logs/a.log",
                "Body": ANY,
                "ChecksumAlgorithm": "SHA256",
                "IfNoneMatch": "*",
            },
        )

    def test_ok(self, remote, s3_client) -> None:
        _, stubber = s3_client
        self._expect_put(stubber)
        result = remote.put("logs/a.log", io.BytesIO(b"data"))
        assert result.status is PutStatus.OK

    def test_precondition_failed(self, remote, s3_client) -> None:
        _, stubber = s3_client
        stubber.add_client_error(
            "put_object",
            service_error_code="PreconditionFailed",
            service_message="At least one of the pre-conditions you specified did not hold",
            http_status_code=412,
        )
        result = remote.put("logs/a.log", io.BytesIO(b"data"))
        assert result.status is PutStatus.PRECONDITION_FAILED

    def test_transient_error(self, remote, s3_client) -> None:
        _, stubber = s3_client
        stubber.add_client_error(
            "put_object",
            service_error_code="SlowDown",
            http_status_code=503,
        )
        result = remote.put("logs/a.log", io.BytesIO(b"data"))
        assert result.status is PutStatus.ERROR
        assert "SlowDown" in result.error

    def test_bad_credentials_fatal(self, remote, s3_client) -> None:
        _, stubber = s3_client
        stubber.add_client_error(
            "put_object",
            service_error_code="InvalidAccessKeyId",
            http_status_code=403,
        )
        with pytest.raises(FatalRemoteError):
            remote.put("logs/a.log", io.BytesIO(b"data"))

    def test_unconditional_put_omits_precondition(self, remote, s3_client) -> None:
        _, stubber = s3_client
        stubber.add_response(
            "put_object",
            {"ETag": '"abc"'},
            {
                "Bucket": BUCKET,
                "Key": "logs/a.log",
                "Body": ANY,
                "ChecksumAlgorithm": "SHA256",
            },
        )
        result = remote.put("logs/a.log", io.BytesIO(b"data"), only_if_absent=False)
        assert result.status is PutStatus.OK


class TestInfo:
    def _expect_head(self, stubber, response):
        stubber.add_response(
            "head_object",
            response,
            {"Bucket": BUCKET, "Key": "logs/a.log", "ChecksumMode": "ENABLED"},
        )

    def test_sha256_checksum(self, remote, s3_client) -> None:
        _, stubber = s3_client
        digest = hashlib.sha256(b"data").digest()
        self._expect_head(stubber, {
            "ContentLength": 4,
            "ETag": '"8d777f385d3dfec8815d20f7496026dc"',
            "ChecksumSHA256": base64.b64encode(digest).decode(),
        })
        info = remote.info("logs/a.log")
        assert info.algorithm == "sha256"
        assert info.checksum == digest.hex()
        assert info.size == 4

    def test_etag_fallback(self, remote, s3_client) -> None:
        _, stubber = s3_client
        md5 = hashlib.md5(b"data").hexdigest()
        self._expect_head(stubber, {"ContentLength": 4, "ETag": f'"{md5.upper()}"'})
        info = remote.info("logs/a.log")
        assert info.algorithm == "md5"
        assert info.checksum == md5

    def test_multipart_without_checksum(self, remote, s3_client) -> None:
        _, stubber = s3_client
        self._expect_head(stubber, {"ContentLength": 4, "ETag": '"0123abcd-3"'})
        with pytest.raises(RemoteStoreError):
            remote.info("logs/a.log")

    def test_not_found(self, remote, s3_client) -> None:
        _, stubber = s3_client
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        with pytest.raises(RemoteStoreError) as exc_info:
            remote.info("logs/a.log")
        assert not isinstance(exc_info.value, FatalRemoteError)

    def test_missing_bucket_fatal(self, remote, s3_client) -> None:
        _, stubber = s3_client
        stubber.add_client_error("head_object", service_error_code="NoSuchBucket", http_status_code=404)
        with pytest.raises(FatalRemoteError):
            remote.info("logs/a.log")
