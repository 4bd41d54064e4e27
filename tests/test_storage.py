"""Tests for the R2 storage layer: retry/backoff, URL helpers, local fallback and the S3 client calls."""

import io
import os

import pytest

from app.common.errors import BadRequestError, NotFoundError
from app.infra import storage_r2
from app.infra.config import settings


class FakeS3:
    """Records the boto3 calls the storage layer makes."""

    def __init__(self):
        self.objects = {}
        self.calls = []

    def put_object(self, **kwargs):
        self.calls.append(("put_object", kwargs))
        self.objects[kwargs["Key"]] = kwargs["Body"]

    def get_object(self, Bucket, Key):
        self.calls.append(("get_object", {"Bucket": Bucket, "Key": Key}))
        return {"Body": io.BytesIO(self.objects[Key])}

    def delete_object(self, Bucket, Key):
        self.calls.append(("delete_object", {"Bucket": Bucket, "Key": Key}))
        self.objects.pop(Key, None)

    def delete_objects(self, Bucket, Delete):
        self.calls.append(("delete_objects", {"Bucket": Bucket, "Delete": Delete}))
        for obj in Delete["Objects"]:
            self.objects.pop(obj["Key"], None)

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.calls.append(("generate_presigned_url", {"operation": operation, "Params": Params, "ExpiresIn": ExpiresIn}))
        return f"https://signed.example.com/{Params['Key']}?expires={ExpiresIn}"


@pytest.fixture
def r2(monkeypatch):
    monkeypatch.setattr(settings, "R2_ACCOUNT_ID", "acct")
    monkeypatch.setattr(settings, "R2_ACCESS_KEY_ID", "key-id")
    monkeypatch.setattr(settings, "R2_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setattr(settings, "R2_BUCKET", "whisperoo-files")
    monkeypatch.setattr(settings, "R2_PUBLIC_URL", "https://cdn.example.com/")
    monkeypatch.setattr(settings, "R2_ENDPOINT_URL", None)
    client = FakeS3()
    monkeypatch.setattr(storage_r2, "_s3_client", client)
    return client


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr(storage_r2.time, "sleep", recorded.append)
    return recorded


def flaky_upload(monkeypatch, failures):
    """upload_bytes that fails `failures` times before succeeding."""
    state = {"calls": 0}

    def _upload(key, data, content_type="application/octet-stream"):
        state["calls"] += 1
        if state["calls"] <= failures:
            raise OSError(f"boom {state['calls']}")
        return key

    monkeypatch.setattr(storage_r2, "upload_bytes", _upload)
    return state


class TestRetry:
    """upload_with_retry: three attempts with capped exponential backoff."""

    def test_delays_double_and_cap_at_five_seconds(self):
        assert [storage_r2.retry_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_succeeds_on_third_attempt(self, monkeypatch, sleeps):
        state = flaky_upload(monkeypatch, failures=2)
        assert storage_r2.upload_with_retry("products/1/2/a.pdf", b"data") == "products/1/2/a.pdf"
        assert state["calls"] == 3
        assert sleeps == [1.0, 2.0]

    def test_reraises_last_error_after_three_attempts(self, monkeypatch, sleeps):
        state = flaky_upload(monkeypatch, failures=10)
        with pytest.raises(OSError, match="boom 3"):
            storage_r2.upload_with_retry("products/1/2/a.pdf", b"data")
        assert state["calls"] == storage_r2.UPLOAD_MAX_RETRIES == 3
        # 最后一次失败后不再等待
        assert sleeps == [1.0, 2.0]

    def test_single_attempt_does_not_sleep(self, monkeypatch, sleeps):
        state = flaky_upload(monkeypatch, failures=1)
        with pytest.raises(OSError):
            storage_r2.upload_with_retry("k", b"data", max_retries=1)
        assert state["calls"] == 1
        assert sleeps == []

    def test_non_positive_retry_count_still_tries_once(self, monkeypatch, sleeps):
        state = flaky_upload(monkeypatch, failures=0)
        assert storage_r2.upload_with_retry("k", b"data", max_retries=0) == "k"
        assert state["calls"] == 1


class TestUrls:
    """build_url / extract_relative_path / presigned_url."""

    def test_build_url_local(self):
        assert storage_r2.build_url("products/1/2/a.pdf") == "/files/products/1/2/a.pdf"
        assert storage_r2.build_url("/products/1/2/a.pdf") == "/files/products/1/2/a.pdf"
        assert storage_r2.build_url("") == ""

    def test_build_url_keeps_full_urls(self, r2):
        assert storage_r2.build_url("https://other.example.com/x.pdf") == "https://other.example.com/x.pdf"
        assert storage_r2.build_url("http://other.example.com/x.pdf") == "http://other.example.com/x.pdf"

    def test_build_url_r2(self, r2):
        assert storage_r2.build_url("products/1/2/a.pdf") == "https://cdn.example.com/products/1/2/a.pdf"

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("/files/products/1/2/a.pdf", "products/1/2/a.pdf"),
            ("https://cdn.example.com/products/1/2/a.pdf", "products/1/2/a.pdf"),
            ("products/1/2/a.pdf", "products/1/2/a.pdf"),
            ("/products/1/2/a.pdf", "products/1/2/a.pdf"),
            ("", ""),
        ],
    )
    def test_extract_relative_path(self, url, expected):
        assert storage_r2.extract_relative_path(url) == expected

    def test_presigned_url_falls_back_to_local_url(self):
        assert storage_r2.presigned_url("products/1/2/a.pdf") == "/files/products/1/2/a.pdf"
        assert storage_r2.presigned_url("/files/products/1/2/a.pdf") == "/files/products/1/2/a.pdf"

    def test_presigned_url_r2(self, r2):
        url = storage_r2.presigned_url("https://cdn.example.com/products/1/2/a.pdf", expires=600)
        assert url == "https://signed.example.com/products/1/2/a.pdf?expires=600"
        name, kwargs = r2.calls[-1]
        assert name == "generate_presigned_url"
        assert kwargs["operation"] == "get_object"
        assert kwargs["Params"] == {"Bucket": "whisperoo-files", "Key": "products/1/2/a.pdf"}

    def test_key_layout(self):
        assert storage_r2.product_file_key(3, 7, "abc", "pdf") == "products/3/7/abc.pdf"
        assert storage_r2.product_thumbnail_key(3, 7, "png") == "product-thumbnails/3/7-thumb.png"
        assert storage_r2.profile_image_key(5, 1700000000000, "jpg") == "profile-images/5/1700000000000.jpg"


class TestLocalFallback:
    """Without R2 credentials files live under FILE_BASE_PATH."""

    def test_write_read_delete(self, files_dir):
        key = storage_r2.upload_bytes("/products/1/2/a.pdf", b"%PDF")
        assert key == "products/1/2/a.pdf"
        assert os.path.isfile(os.path.join(files_dir, key))
        assert storage_r2.read_bytes("/files/products/1/2/a.pdf") == b"%PDF"

        storage_r2.delete_object(key)
        assert not os.path.exists(os.path.join(files_dir, key))
        # 重复删除不报错
        storage_r2.delete_object(key)

    def test_read_missing_file(self):
        with pytest.raises(NotFoundError) as exc:
            storage_r2.read_bytes("products/404/missing.pdf")
        assert exc.value.code == "FILE_NOT_FOUND"

    def test_delete_objects_batch(self, files_dir):
        storage_r2.upload_bytes("products/1/2/a.pdf", b"a")
        storage_r2.upload_bytes("products/1/2/b.pdf", b"b")
        storage_r2.delete_objects(["/files/products/1/2/a.pdf", "products/1/2/b.pdf", ""])
        assert os.listdir(os.path.join(files_dir, "products", "1", "2")) == []

    def test_delete_objects_empty_is_noop(self, monkeypatch):
        def _fail(key):
            raise AssertionError("delete_object must not be called")

        monkeypatch.setattr(storage_r2, "delete_object", _fail)
        storage_r2.delete_objects([])
        storage_r2.delete_objects(["", ""])

    def test_client_requires_configuration(self):
        assert storage_r2.use_r2() is False
        with pytest.raises(BadRequestError) as exc:
            storage_r2._get_s3()
        assert exc.value.code == "R2_NOT_CONFIGURED"


class TestR2Client:
    """Calls sent to the S3-compatible client when R2 is configured."""

    def test_endpoint(self, r2, monkeypatch):
        assert storage_r2._endpoint() == "https://acct.r2.cloudflarestorage.com"
        monkeypatch.setattr(settings, "R2_ENDPOINT_URL", "https://r2.internal")
        assert storage_r2._endpoint() == "https://r2.internal"

    def test_upload_and_read(self, r2):
        assert storage_r2.upload_bytes("products/1/2/a.pdf", b"%PDF", "application/pdf") == "products/1/2/a.pdf"
        name, kwargs = r2.calls[0]
        assert name == "put_object"
        assert kwargs == {
            "Bucket": "whisperoo-files",
            "Key": "products/1/2/a.pdf",
            "Body": b"%PDF",
            "ContentType": "application/pdf",
            "ContentLength": 4,
        }
        assert storage_r2.read_bytes("https://cdn.example.com/products/1/2/a.pdf") == b"%PDF"

    def test_delete_objects_is_one_batch_call(self, r2):
        storage_r2.delete_objects(["https://cdn.example.com/products/1/a.pdf", "/files/products/1/b.pdf"])
        assert r2.calls == [
            (
                "delete_objects",
                {
                    "Bucket": "whisperoo-files",
                    "Delete": {"Objects": [{"Key": "products/1/a.pdf"}, {"Key": "products/1/b.pdf"}]},
                },
            )
        ]

    def test_delete_objects_empty_makes_no_call(self, r2):
        storage_r2.delete_objects([])
        assert r2.calls == []
