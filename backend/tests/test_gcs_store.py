from datetime import datetime, timezone

import pytest
from google.cloud.exceptions import NotFound

from utils.gcs_utils import GCSObjectStore, StorageError


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name
        self.updated = datetime(2026, 4, 2, 9, 30, tzinfo=timezone.utc)

    def upload_from_string(self, data, content_type=None):
        if self.bucket.fail_writes:
            raise RuntimeError("503 backend error")
        self.bucket.objects[self.name] = (data, content_type)

    def download_as_bytes(self):
        if self.name not in self.bucket.objects:
            raise NotFound(self.name)
        data, _ = self.bucket.objects[self.name]
        return data if isinstance(data, bytes) else data.encode("utf-8")

    def exists(self):
        return self.name in self.bucket.objects


class FakeBucket:
    def __init__(self):
        self.objects = {}
        self.fail_writes = False

    def blob(self, name):
        return FakeBlob(self, name)

    def get_blob(self, name):
        return FakeBlob(self, name) if name in self.objects else None


class FakeClient:
    def __init__(self):
        self.buckets = {}

    def bucket(self, name):
        return self.buckets.setdefault(name, FakeBucket())


@pytest.fixture
def gcs():
    return GCSObjectStore("assets-bucket", client=FakeClient())


class TestGCSObjectStore:
    def test_put_and_get(self, gcs):
        uri = gcs.put("jobs/j1/edl.json", '{"a": 1}', "application/json")

        assert uri == "gs://assets-bucket/jobs/j1/edl.json"
        assert gcs.get("jobs/j1/edl.json") == b'{"a": 1}'
        assert gcs.exists("jobs/j1/edl.json")

    def test_missing_object(self, gcs):
        assert gcs.get("jobs/j1/edl.json") is None
        assert not gcs.exists("jobs/j1/edl.json")
        assert gcs.updated_at("jobs/j1/edl.json") is None

    def test_updated_at(self, gcs):
        gcs.put("jobs/j1/output/final.mp4", b"mp4", "video/mp4")

        assert gcs.updated_at("jobs/j1/output/final.mp4") == "2026-04-02T09:30:00+00:00"

    def test_write_failure(self, gcs):
        gcs._client.bucket("assets-bucket").fail_writes = True

        with pytest.raises(StorageError, match="gs://assets-bucket/jobs/j1/edl.json"):
            gcs.put("jobs/j1/edl.json", "{}", "application/json")

