from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.channels.publisher import Publisher, generate_blob_id
from core.channels.resolver import ChannelResolver
from core.exceptions import (
    MalformedDocumentError,
    ObjectNotFoundError,
    PreconditionFailedError,
    StorageUnavailableError,
    ValidationError,
)
from core.storage.local import LocalStorage
from tests.utils_channels import seed_channel


class FaultyStorage:
    """Delegates to a real backend but fails writes to chosen keys."""

    def __init__(self, inner: LocalStorage) -> None:
        self.inner = inner
        self.fail_writes: set[str] = set()
        self.writes: list[str] = []
        self.before_write = None

    def get_object(self, key):
        return self.inner.get_object(key)

    def get_bytes(self, key):
        return self.inner.get_bytes(key)

    def put_bytes(self, key, data, **kwargs):
        if self.before_write is not None:
            self.before_write(key)
        if key in self.fail_writes:
            raise StorageUnavailableError(f"injected failure for {key}")
        etag = self.inner.put_bytes(key, data, **kwargs)
        self.writes.append(key)
        return etag


def _pointer(storage: LocalStorage, channel: str) -> dict:
    return json.loads(storage.get_bytes(f"{channel}.json"))


def test_publish_to_existing_channel(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")

    blob_id = Publisher(storage).publish("thechannel", b"new", blob_id="tarball-1235")

    assert blob_id == "tarball-1235"
    assert storage.get_bytes("tarball-1235.tar.xz") == b"new"
    assert _pointer(storage, "thechannel") == {"latest": "tarball-1235", "previous": ["tarball-1234"]}
    assert storage.get_bytes("tarball-1234.tar.xz") == b"old"


def test_publish_creates_channel_and_index(storage: LocalStorage) -> None:
    faulty = FaultyStorage(storage)

    Publisher(faulty).publish("fresh", b"data", blob_id="fresh-1")

    assert faulty.writes == ["fresh-1.tar.xz", "channels.json", "fresh.json"]
    assert json.loads(storage.get_bytes("channels.json")) == {"channels": ["fresh"]}
    assert ChannelResolver(storage).resolve_latest("fresh") == "fresh-1"


def test_publish_appends_to_existing_index(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")

    Publisher(storage).publish("second", b"data", blob_id="second-1")

    assert json.loads(storage.get_bytes("channels.json"))["channels"] == ["thechannel", "second"]


def test_generated_blob_ids_are_unique(storage: LocalStorage) -> None:
    publisher = Publisher(storage)

    first = publisher.publish("thechannel", b"one")
    second = publisher.publish("thechannel", b"two")

    assert first != second
    assert first.startswith("thechannel-")
    assert _pointer(storage, "thechannel") == {"latest": second, "previous": [first]}
    assert generate_blob_id("x") != generate_blob_id("x")


def test_blob_id_collision_is_fatal(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")
    storage.put_bytes("stray.tar.xz", b"someone else's")

    with pytest.raises(PreconditionFailedError):
        Publisher(storage).publish("thechannel", b"new", blob_id="stray")

    assert storage.get_bytes("stray.tar.xz") == b"someone else's"
    assert _pointer(storage, "thechannel")["latest"] == "tarball-1234"


def test_republishing_a_used_blob_id_is_rejected(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")

    with pytest.raises(PreconditionFailedError):
        Publisher(storage).publish("thechannel", b"old", blob_id="tarball-1234")


def test_blob_write_failure_leaves_pointer_untouched(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")
    faulty = FaultyStorage(storage)
    faulty.fail_writes.add("tarball-1235.tar.xz")

    with pytest.raises(StorageUnavailableError):
        Publisher(faulty).publish("thechannel", b"new", blob_id="tarball-1235")

    assert faulty.writes == []
    assert _pointer(storage, "thechannel")["latest"] == "tarball-1234"


def test_pointer_write_failure_orphans_blob_only(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")
    faulty = FaultyStorage(storage)
    faulty.fail_writes.add("thechannel.json")

    with pytest.raises(StorageUnavailableError):
        Publisher(faulty).publish("thechannel", b"new", blob_id="tarball-1235")

    assert storage.get_bytes("tarball-1235.tar.xz") == b"new"
    assert _pointer(storage, "thechannel")["latest"] == "tarball-1234"


def test_no_pointer_ever_names_a_missing_blob(storage: LocalStorage) -> None:
    faulty = FaultyStorage(storage)
    observed: list[str] = []

    def check_pointer_targets(key: str) -> None:
        if key == "fresh.json":
            observed.append(key)
            assert storage.get_bytes("fresh-1.tar.xz") == b"data"

    faulty.before_write = check_pointer_targets
    Publisher(faulty).publish("fresh", b"data", blob_id="fresh-1")

    assert observed == ["fresh.json"]


def test_concurrent_publishes_on_one_channel(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")
    faulty = FaultyStorage(storage)
    # Both publishers must have read the pointer before either writes it.
    barrier = threading.Barrier(2, timeout=10)
    faulty.before_write = lambda key: barrier.wait() if key.endswith(".tar.xz") else None
    publisher = Publisher(faulty)

    def attempt(blob_id: str):
        try:
            return publisher.publish("thechannel", blob_id.encode(), blob_id=blob_id)
        except PreconditionFailedError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(attempt, ["tarball-a", "tarball-b"]))

    winners = [o for o in outcomes if isinstance(o, str)]
    losers = [o for o in outcomes if isinstance(o, PreconditionFailedError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert _pointer(storage, "thechannel") == {"latest": winners[0], "previous": ["tarball-1234"]}


def test_concurrent_publishes_creating_one_channel(storage: LocalStorage) -> None:
    faulty = FaultyStorage(storage)
    barrier = threading.Barrier(2, timeout=10)
    faulty.before_write = lambda key: barrier.wait() if key.endswith(".tar.xz") else None
    publisher = Publisher(faulty)

    def attempt(blob_id: str):
        try:
            return publisher.publish("fresh", blob_id.encode(), blob_id=blob_id)
        except PreconditionFailedError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(attempt, ["fresh-a", "fresh-b"]))

    winners = [o for o in outcomes if isinstance(o, str)]
    assert len(winners) == 1
    assert _pointer(storage, "fresh") == {"latest": winners[0], "previous": []}
    assert json.loads(storage.get_bytes("channels.json")) == {"channels": ["fresh"]}


@pytest.mark.parametrize("name", ["", "a/b", "../x", "channels", ".hidden", "x.tar.xz"])
def test_invalid_channel_names_are_rejected(storage: LocalStorage, name: str) -> None:
    with pytest.raises(ValidationError):
        Publisher(storage).publish(name, b"data", blob_id="blob-1")
    with pytest.raises(ObjectNotFoundError):
        storage.get_bytes("blob-1.tar.xz")


def test_corrupt_pointer_blocks_publish(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")
    storage.put_bytes("thechannel.json", b"garbage")

    with pytest.raises(MalformedDocumentError):
        Publisher(storage).publish("thechannel", b"new", blob_id="tarball-1235")

    with pytest.raises(ObjectNotFoundError):
        storage.get_bytes("tarball-1235.tar.xz")


def test_publish_file_uses_file_stem(storage: LocalStorage, tmp_path) -> None:
    path = tmp_path / "tarball-1235.tar.xz"
    path.write_bytes(b"tarball")

    assert Publisher(storage).publish_file("thechannel", path) == "tarball-1235"
    assert storage.get_bytes("tarball-1235.tar.xz") == b"tarball"


def test_publish_file_never_overwrites_a_blob(storage: LocalStorage, tmp_path) -> None:
    storage.put_bytes("tarball-1235.tar.xz", b"published earlier")
    path = tmp_path / "tarball-1235.tar.xz"
    path.write_bytes(b"tarball")

    with pytest.raises(PreconditionFailedError):
        Publisher(storage).publish_file("thechannel", path)

    assert storage.get_bytes("tarball-1235.tar.xz") == b"published earlier"


def test_publish_file_requires_tar_xz(storage: LocalStorage, tmp_path) -> None:
    path = tmp_path / "tarball.tar.gz"
    path.write_bytes(b"tarball")

    with pytest.raises(ValidationError, match="tar.xz"):
        Publisher(storage).publish_file("thechannel", path)


def test_list_channels(storage: LocalStorage) -> None:
    seed_channel(storage, "thechannel", "tarball-1234", b"old")
    storage.put_bytes("channels.json", b'{"channels": ["thechannel", "ghost"]}')

    channels = Publisher(storage).list_channels()

    assert channels["thechannel"].latest == "tarball-1234"
    assert channels["ghost"] is None
