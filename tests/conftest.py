import copy
import datetime

import pytest

from media_pipeline.config import AppConfig
from media_pipeline.extensions import PipelineServices


def _deep_merge(target, payload):
    for key, value in payload.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeSnapshot:
    def __init__(self, data):
        self.exists = data is not None
        self._data = data

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDoc:
    def __init__(self, db, path):
        self.db = db
        self.path = path

    def set(self, payload, merge=False):
        if self.db.fail_writes:
            raise RuntimeError("firestore unavailable")
        self.db.writes.append((self.path, copy.deepcopy(payload), merge))
        if merge and self.path in self.db.docs:
            _deep_merge(self.db.docs[self.path], payload)
        else:
            self.db.docs[self.path] = copy.deepcopy(payload)

    def get(self):
        return FakeSnapshot(self.db.docs.get(self.path))

    def collection(self, name):
        return FakeCollection(self.db, f"{self.path}/{name}")


class FakeCollection:
    def __init__(self, db, path):
        self.db = db
        self.path = path

    def document(self, doc_id):
        return FakeDoc(self.db, f"{self.path}/{doc_id}")


class FakeDB:
    def __init__(self):
        self.docs = {}
        self.writes = []
        self.fail_writes = False

    def collection(self, name):
        return FakeCollection(self, name)

    def job_doc(self, owner_id, job_id):
        return self.docs.get(f"users/{owner_id}/docs/{job_id}", {})


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name
        self.metadata = None

    @property
    def size(self):
        entry = self.bucket.objects.get(self.name)
        return len(entry["data"]) if entry else None

    @property
    def time_created(self):
        entry = self.bucket.objects.get(self.name)
        return entry["time_created"] if entry else None

    def exists(self):
        return self.name in self.bucket.objects

    def download_to_filename(self, path):
        with open(path, "wb") as handle:
            handle.write(self.bucket.objects[self.name]["data"])

    def download_as_bytes(self):
        return self.bucket.objects[self.name]["data"]

    def download_as_text(self, encoding="utf-8"):
        return self.bucket.objects[self.name]["data"].decode(encoding)

    def upload_from_string(self, data, content_type=None):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.bucket.put(self.name, data, content_type=content_type)


class FakeBucket:
    name = "test-bucket"

    def __init__(self):
        self.objects = {}
        self.copies = []
        self.fail_copies = set()

    def put(self, name, data, *, content_type=None, time_created=None):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.objects[name] = {
            "data": data,
            "content_type": content_type,
            "time_created": time_created or datetime.datetime.now(datetime.timezone.utc),
        }

    def text(self, name):
        return self.objects[name]["data"].decode("utf-8")

    def blob(self, name):
        return FakeBlob(self, name)

    def get_blob(self, name):
        return FakeBlob(self, name) if name in self.objects else None

    def list_blobs(self, prefix=None):
        return [FakeBlob(self, name) for name in sorted(self.objects) if name.startswith(prefix or "")]

    def copy_blob(self, blob, destination_bucket, new_name=None):
        if blob.name in self.fail_copies:
            raise RuntimeError("copy failed")
        entry = dict(self.objects[blob.name])
        destination_bucket.objects[new_name] = entry
        self.copies.append((blob.name, new_name))
        return FakeBlob(destination_bucket, new_name)

    def delete(self, name):
        self.objects.pop(name, None)


@pytest.fixture()
def fake_db():
    return FakeDB()


@pytest.fixture()
def fake_bucket():
    return FakeBucket()


@pytest.fixture()
def config():
    return AppConfig(
        storage_bucket="test-bucket",
        gemini_api_key="",
        max_direct_audio_bytes=1000,
        max_audio_input_bytes=10_000_000,
        chunk_safety_margin=0.85,
        audio_chunk_overlap_seconds=10,
        max_text_chunk_chars=20000,
        text_chunk_overlap_chars=500,
        pdf_pages_per_chunk=5,
        pdf_call_delay_ms=0,
        poll_interval_seconds=5,
        max_poll_attempts=10,
    )


@pytest.fixture()
def services(fake_db, fake_bucket):
    return PipelineServices(db=fake_db, bucket=fake_bucket, gemini=object(), synthesizer=None)
