import pytest

from sync_client.errors import LocalStoreError
from sync_client.models import LocalRecord
from sync_client.store import LocalStore


def record(book_id="book-1", updated_at=1000, **kwargs):
    values = dict(user_id="user-1", book_id=book_id, position=f"epubcfi(/6/4!/4/2/1:{updated_at})",
                  percentage=0.1, updated_at=updated_at, device_id="device-a")
    values.update(kwargs)
    return LocalRecord(**values)


def test_get_missing(store):
    assert store.get("book-1") is None


def test_put_replaces_previous_record(store):
    store.put(record(updated_at=1000, percentage=0.1))
    store.put(record(updated_at=2000, percentage=0.2, page_number=12, chapter_id="ch-2"))

    stored = store.get("book-1")
    assert stored == record(updated_at=2000, percentage=0.2, page_number=12, chapter_id="ch-2")


def test_survives_restart(tmp_path):
    path = str(tmp_path / "progress.db")
    first = LocalStore(path)
    first.put(record())
    device_id = first.device_id
    first.close()

    second = LocalStore(path)
    assert second.get("book-1") == record()
    assert second.device_id == device_id
    second.close()


def test_device_id_is_generated_once(store):
    device_id = store.device_id
    assert device_id
    assert store.device_id == device_id


def test_device_ids_differ_between_installations(tmp_path):
    first = LocalStore(str(tmp_path / "a.db"))
    second = LocalStore(str(tmp_path / "b.db"))
    assert first.device_id != second.device_id
    first.close()
    second.close()


def test_failed_put_keeps_previous_record(store):
    store.put(record())

    with pytest.raises(LocalStoreError):
        store.put(record(updated_at=2000, position=None))

    assert store.get("book-1") == record()


def test_compare_and_put(store):
    assert store.compare_and_put(record(), None)
    assert not store.compare_and_put(record(updated_at=3000), None)

    current = store.get("book-1")
    assert store.compare_and_put(record(updated_at=3000), current)
    # The snapshot is outdated now.
    assert not store.compare_and_put(record(updated_at=4000), current)
    assert store.get("book-1").updated_at == 3000


def test_mark_synced_only_for_the_pushed_record(store):
    store.put(record(updated_at=1000))
    store.put(record(updated_at=2000))

    assert not store.mark_synced("book-1", 1000)
    assert not store.get("book-1").is_synced

    assert store.mark_synced("book-1", 2000)
    assert store.get("book-1").is_synced


def test_unsynced(store):
    store.put(record(book_id="book-1", updated_at=2000))
    store.put(record(book_id="book-2", updated_at=1000))
    store.put(record(book_id="book-3", updated_at=3000, is_synced=True))

    assert [r.book_id for r in store.unsynced()] == ["book-2", "book-1"]
