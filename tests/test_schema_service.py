import json

import pytest

from crud6.core.services.schema_cache import SchemaCache, TTLMemoryBackend
from crud6.core.services.schema_service import SchemaService
from crud6.core.services.schema_store import SchemaLocator, SchemaStore


def things(table):
    return {
        "model": "things",
        "table": table,
        "fields": {
            "id": {"type": "integer"},
            "name": {"type": "string", "show_in": ["list", "create"]},
        },
    }


@pytest.fixture
def clock(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr("crud6.core.services.schema_cache.time.time", lambda: now[0])
    return now


@pytest.fixture
def things_path(tmp_path):
    directory = tmp_path / "crud6"
    directory.mkdir()
    path = directory / "things.json"
    path.write_text(json.dumps(things("things_v1")))
    return path


def make_service(root, persistent):
    cache = SchemaCache(TTLMemoryBackend(), ttl=10, persistent_enabled=persistent)
    return SchemaService(SchemaStore(SchemaLocator(str(root), "crud6"), cache=cache))


class TestTTLReload:
    @pytest.mark.parametrize("persistent", [True, False])
    def test_edited_file_is_seen_after_ttl(self, tmp_path, things_path, clock, persistent):
        service = make_service(tmp_path, persistent)
        assert service.get_schema("things")["table"] == "things_v1"

        things_path.write_text(json.dumps(things("things_v2")))
        clock[0] += 5
        assert service.get_schema("things")["table"] == "things_v1"

        clock[0] += 3600
        assert service.get_schema("things")["table"] == "things_v2"

    def test_filtered_schema_follows_reload(self, tmp_path, things_path, clock):
        service = make_service(tmp_path, True)
        assert service.get_filtered_schema("things", "list")["table"] == "things_v1"
        assert service.get_filtered_schema("things", "list,create")["table"] == "things_v1"

        things_path.write_text(json.dumps(things("things_v2")))
        clock[0] += 3600

        assert service.get_filtered_schema("things", "list")["table"] == "things_v2"
        assert service.get_filtered_schema("things", "list,create")["table"] == "things_v2"

    def test_clear_cache_drops_filtered_entries(self, tmp_path, things_path):
        service = make_service(tmp_path, False)
        service.get_filtered_schema("things", "list")

        things_path.write_text(json.dumps(things("things_v2")))
        service.store.clear_cache("things")

        assert service.get_filtered_schema("things", "list")["table"] == "things_v2"


class TestFilteredCache:
    def test_unknown_contexts_are_not_remembered(self, schema_service):
        for i in range(20):
            schema = schema_service.get_filtered_schema("users", f"bogus{i}")
            assert "fields" in schema

        _, entries = schema_service._filtered.get(("users", None), (0, {}))
        assert entries == {}

    def test_context_lists_share_one_entry_regardless_of_order(self, schema_service):
        first = schema_service.get_filtered_schema("users", "list,form")
        second = schema_service.get_filtered_schema("users", "form,list,nope")
        third = schema_service.get_filtered_schema("users", "form, list, form")

        _, entries = schema_service._filtered[("users", None)]
        assert list(entries) == [("form", "list")]
        assert first == second == third
        assert set(first["contexts"]) == {"form", "list"}

    def test_single_context_is_served_from_a_list(self, schema_service):
        multi = schema_service.get_filtered_schema("users", "list,detail")
        single = schema_service.get_filtered_schema("users", "list")

        assert single["fields"] == multi["contexts"]["list"]["fields"]
        assert "contexts" not in single

    def test_single_known_name_in_a_list_keeps_list_shape(self, schema_service):
        single = schema_service.get_filtered_schema("users", "list")
        listed = schema_service.get_filtered_schema("users", "list,bogus")

        assert "contexts" not in single
        assert set(listed["contexts"]) == {"list"}


class TestWarm:
    def test_warm_loads_every_default_schema(self, schema_service):
        loaded = schema_service.warm()

        assert loaded == len(schema_service.store.locator.list_models())
        assert len(schema_service.store.cache) == loaded

    def test_warm_skips_broken_schemas(self, tmp_path, things_path):
        (things_path.parent / "broken.json").write_text("{not json")
        service = make_service(tmp_path, False)

        assert service.warm() == 1
        assert service.store.cache.get("things") is not None
