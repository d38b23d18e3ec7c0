from driveflow.models import FileKind, FileRecord
from driveflow.state_db import get_meta, load_snapshot, save_snapshot, set_meta


def _record(file_id, **kwargs):
    kwargs.setdefault("kind", FileKind.FILE)
    kwargs.setdefault("last_modified", "2024-01-01T00:00:00.000Z")
    return FileRecord(id=file_id, name=f"{file_id}.txt", **kwargs)


async def test_missing_snapshot_loads_empty(tmp_path):
    assert await load_snapshot(tmp_path / "nested" / "state.db", "root") == {}


async def test_snapshot_round_trip_preserves_optional_fields(tmp_path):
    db_path = tmp_path / "state.db"
    snapshot = {
        "a": _record("a", parent_id="root", mime_type="text/plain", size=12),
        "d": _record("d", kind=FileKind.FOLDER),
    }

    await save_snapshot(db_path, "root", snapshot)

    assert await load_snapshot(db_path, "root") == snapshot


async def test_save_replaces_previous_snapshot_per_scope(tmp_path):
    db_path = tmp_path / "state.db"
    await save_snapshot(db_path, "root", {"a": _record("a"), "b": _record("b")})
    await save_snapshot(db_path, "other", {"z": _record("z")})

    await save_snapshot(db_path, "root", {"b": _record("b")})

    assert set(await load_snapshot(db_path, "root")) == {"b"}
    assert set(await load_snapshot(db_path, "other")) == {"z"}

    await save_snapshot(db_path, "root", {})
    assert await load_snapshot(db_path, "root") == {}


async def test_meta_values(tmp_path):
    db_path = tmp_path / "state.db"
    assert await get_meta(db_path, "snapshot_at:root") is None

    await set_meta(db_path, "snapshot_at:root", "2024-01-01 10:00:00")
    await set_meta(db_path, "snapshot_at:root", "2024-01-02 10:00:00")

    assert await get_meta(db_path, "snapshot_at:root") == "2024-01-02 10:00:00"
