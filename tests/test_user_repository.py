"""
Repository behaviour against a temporary users.json.
"""
from __future__ import annotations

import asyncio
import json
import sys
import threading
import time
from pathlib import Path

import pytest

# Make the api package importable when running tests from a checkout
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import api.repositories.user_repository as user_repository  # noqa: E402
from api.domain.users import UserDraft, ValidationError  # noqa: E402
from api.repositories.json_storage import StorageError  # noqa: E402
from api.repositories.user_repository import UserRepository  # noqa: E402


def _draft(first="Ada", role="viewer", **extra):
    data = {"firstName": first, "lastName": "Lovelace", "email": f"{first.lower()}@example.com", "role": role}
    data.update(extra)
    return data


def _read(path: Path) -> list:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture()
def data_file(tmp_path):
    return tmp_path / "nested" / "data" / "users.json"


@pytest.fixture()
def repo(data_file):
    return UserRepository(data_file)


@pytest.mark.asyncio
async def test_missing_file_is_created_empty(repo, data_file):
    assert not data_file.exists()
    assert await repo.find_all() == []
    assert data_file.exists()
    assert _read(data_file) == []
    assert repo.loaded


@pytest.mark.asyncio
async def test_ids_are_monotonic_and_not_reused(repo, data_file):
    created = [await repo.create(_draft(name)) for name in ("Ada", "Grace", "Alan")]
    assert [user.id for user in created] == [1, 2, 3]

    assert await repo.delete(2) is True
    fourth = await repo.create(_draft("Barbara"))
    assert fourth.id == 4
    assert sorted(item["id"] for item in _read(data_file)) == [1, 3, 4]


@pytest.mark.asyncio
async def test_create_accepts_draft_objects(repo):
    user = await repo.create(UserDraft(first_name="Ada", last_name="L", email="ada@example.com", role="viewer"))
    assert user.id == 1
    assert await repo.find_by_id(1) == user


@pytest.mark.asyncio
async def test_invalid_draft_is_never_persisted(repo, data_file):
    await repo.find_all()
    before = data_file.read_bytes()
    with pytest.raises(ValidationError) as exc:
        await repo.create(_draft(role="admin"))
    assert exc.value.paths == ["phoneNumber", "birthDate"]
    assert await repo.find_all() == []
    assert data_file.read_bytes() == before


@pytest.mark.asyncio
async def test_find_all_sorted_regardless_of_file_order(data_file):
    data_file.parent.mkdir(parents=True)
    records = [
        {"id": 9, **_draft("Zed")},
        {"id": 2, **_draft("Bea")},
        {"id": 5, **_draft("Max")},
    ]
    data_file.write_text(json.dumps(records), encoding="utf-8")

    repo = UserRepository(data_file)
    assert [user.id for user in await repo.find_all()] == [2, 5, 9]
    created = await repo.create(_draft("New"))
    assert created.id == 10


@pytest.mark.asyncio
async def test_invalid_records_are_dropped_at_load(data_file):
    data_file.parent.mkdir(parents=True)
    records = [
        {"id": 1, **_draft("Ada")},
        {"id": 2, "firstName": "No", "lastName": "Role", "email": "no@example.com"},
        {"id": -3, **_draft("Neg")},
        "garbage",
        {"id": 4, **_draft("Bad", birthDate="04/04/1990")},
        {"id": 5, **_draft("Eve", role="editor", phoneNumber="555")},
    ]
    data_file.write_text(json.dumps(records), encoding="utf-8")

    repo = UserRepository(data_file)
    assert [user.id for user in await repo.find_all()] == [1, 5]


@pytest.mark.asyncio
async def test_non_array_document_is_treated_as_empty(data_file):
    data_file.parent.mkdir(parents=True)
    data_file.write_text(json.dumps({"users": []}), encoding="utf-8")
    assert await UserRepository(data_file).find_all() == []


@pytest.mark.asyncio
async def test_corrupt_file_raises_storage_error(data_file):
    data_file.parent.mkdir(parents=True)
    data_file.write_text("[{not json", encoding="utf-8")
    repo = UserRepository(data_file)
    with pytest.raises(StorageError):
        await repo.find_all()
    assert not repo.loaded


@pytest.mark.asyncio
async def test_round_trip_through_a_new_repository(repo, data_file):
    await repo.create(_draft("Ada", role="admin", phoneNumber="555-0100", birthDate="1815-12-10"))
    await repo.create(_draft("Eve", role="editor", phoneNumber="555-0101"))
    await repo.create(_draft("Vic"))
    original = await repo.find_all()

    reloaded = UserRepository(data_file)
    assert await reloaded.find_all() == original
    admin = await reloaded.find_by_id(1)
    assert admin.phone_number == "555-0100"
    assert admin.birth_date == "1815-12-10"


@pytest.mark.asyncio
async def test_file_is_pretty_printed_camel_case(repo, data_file):
    await repo.create(_draft("Ada"))
    text = data_file.read_text(encoding="utf-8")
    assert text.startswith("[\n  {")
    assert _read(data_file) == [{"id": 1, **_draft("Ada")}]


@pytest.mark.asyncio
async def test_external_edits_are_invisible_after_load(repo, data_file):
    await repo.create(_draft("Ada"))
    data_file.write_text("[]", encoding="utf-8")
    assert [user.id for user in await repo.find_all()] == [1]


@pytest.mark.asyncio
async def test_update_replaces_record_wholesale(repo, data_file):
    await repo.create(_draft("Ada", role="editor", phoneNumber="555"))
    updated = await repo.update(1, _draft("Ada", role="viewer"))
    assert updated.id == 1
    assert updated.phone_number is None
    assert _read(data_file) == [{"id": 1, **_draft("Ada", role="viewer")}]


@pytest.mark.asyncio
async def test_update_ignores_id_in_payload(repo):
    await repo.create(_draft("Ada"))
    updated = await repo.update(1, {**_draft("Ada"), "id": 42})
    assert updated.id == 1
    assert await repo.find_by_id(42) is None


@pytest.mark.asyncio
async def test_update_enforces_role_rules(repo):
    await repo.create(_draft("Ada"))
    with pytest.raises(ValidationError):
        await repo.update(1, _draft("Ada", role="editor"))
    assert (await repo.find_by_id(1)).role == "viewer"


@pytest.mark.asyncio
async def test_update_missing_id_does_not_write(repo, data_file):
    await repo.create(_draft("Ada"))
    before = data_file.read_bytes()
    mtime = data_file.stat().st_mtime_ns
    assert await repo.update(99, _draft("Ghost")) is None
    assert data_file.read_bytes() == before
    assert data_file.stat().st_mtime_ns == mtime


@pytest.mark.asyncio
async def test_delete_missing_id_returns_false(repo, data_file):
    await repo.create(_draft("Ada"))
    before = data_file.read_bytes()
    assert await repo.delete(7) is False
    assert data_file.read_bytes() == before


@pytest.mark.asyncio
async def test_patch_merges_then_revalidates(repo):
    await repo.create(_draft("Ada"))
    patched = await repo.patch(1, {"role": "editor", "phoneNumber": "555-0199"})
    assert patched.role == "editor"
    assert patched.first_name == "Ada"

    with pytest.raises(ValidationError) as exc:
        await repo.patch(1, {"role": "admin"})
    assert exc.value.paths == ["birthDate"]

    with pytest.raises(ValidationError):
        await repo.patch(1, {"phoneNumber": None})
    assert (await repo.find_by_id(1)).phone_number == "555-0199"

    assert await repo.patch(99, {"lastName": "X"}) is None


@pytest.mark.asyncio
async def test_concurrent_writes_land_in_issue_order(repo, data_file, monkeypatch):
    await repo.create(_draft("Ada"))
    snapshots = []
    real_save = user_repository.save_records

    def recording_save(path, records):
        snapshots.append([record["id"] for record in records])
        real_save(path, records)

    monkeypatch.setattr(user_repository, "save_records", recording_save)

    created, removed = await asyncio.gather(repo.create(_draft("Grace")), repo.delete(1))

    assert created.id == 2
    assert removed is True
    assert snapshots == [[1, 2], [2]]
    assert _read(data_file) == [{"id": 2, **_draft("Grace")}]


@pytest.mark.asyncio
async def test_failed_write_keeps_cache_ahead_of_file(repo, data_file, monkeypatch):
    await repo.find_all()
    real_save = user_repository.save_records

    def failing_save(path, records):
        raise StorageError("Could not write users file", path)

    monkeypatch.setattr(user_repository, "save_records", failing_save)
    with pytest.raises(StorageError):
        await repo.create(_draft("Ada"))

    assert [user.id for user in await repo.find_all()] == [1]
    assert _read(data_file) == []

    monkeypatch.setattr(user_repository, "save_records", real_save)
    await repo.create(_draft("Grace"))
    assert sorted(item["id"] for item in _read(data_file)) == [1, 2]


@pytest.mark.asyncio
async def test_cancelled_write_still_blocks_the_next_one(repo, data_file, monkeypatch):
    await repo.find_all()
    real_save = user_repository.save_records
    guard = threading.Lock()
    state = {"active": 0, "peak": 0}

    def slow_save(path, records):
        with guard:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        try:
            time.sleep(0.3)
            real_save(path, records)
        finally:
            with guard:
                state["active"] -= 1

    monkeypatch.setattr(user_repository, "save_records", slow_save)

    first = asyncio.create_task(repo.create(_draft("Ada")))
    await asyncio.sleep(0.05)
    first.cancel()
    second = await repo.create(_draft("Grace"))

    with pytest.raises(asyncio.CancelledError):
        await first
    assert state["peak"] == 1
    assert second.id == 2
    assert sorted(item["id"] for item in _read(data_file)) == [1, 2]


@pytest.mark.asyncio
async def test_concurrent_first_access_loads_once(data_file, monkeypatch):
    data_file.parent.mkdir(parents=True)
    data_file.write_text(json.dumps([{"id": 1, **_draft("Ada")}]), encoding="utf-8")
    real_load = user_repository.load_records
    calls = []

    def counting_load(path):
        calls.append(path)
        time.sleep(0.05)
        return real_load(path)

    monkeypatch.setattr(user_repository, "load_records", counting_load)
    repo = UserRepository(data_file)

    results = await asyncio.gather(
        repo.find_all(),
        repo.create(_draft("Grace")),
        repo.find_all(),
        repo.create(_draft("Alan")),
    )

    assert len(calls) == 1
    assert sorted([results[1].id, results[3].id]) == [2, 3]
    ids = [user.id for user in await repo.find_all()]
    assert ids == [1, 2, 3]
    assert sorted(item["id"] for item in _read(data_file)) == [1, 2, 3]


@pytest.mark.asyncio
async def test_deeply_nested_file_raises_storage_error(data_file):
    data_file.parent.mkdir(parents=True)
    data_file.write_text("[" * 200000 + "]" * 200000, encoding="utf-8")
    with pytest.raises(StorageError):
        await UserRepository(data_file).find_all()
