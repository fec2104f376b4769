import pytest

from crud6.core.services.schema_normalizer import SchemaNormalizer


@pytest.fixture
def normalizer():
    return SchemaNormalizer()


RAW_SCHEMAS = [
    {
        "model": "products",
        "table": "products",
        "fields": {
            "id": {"type": "integer", "autoIncrement": True},
            "name": {"type": "string", "show_in": ["list", "form"]},
            "category_id": {"type": "smartlookup", "lookup": {"model": "categories"}},
        },
    },
    {
        "model": "legacy",
        "table": "legacy",
        "primaryKey": "code",
        "fields": {
            "code": {"type": "string", "primaryKey": True, "nullable": False},
            "active": {"type": "boolean-yn", "listable": False},
            "secret": "password",
            "owner_id": {"type": "integer", "references": {"table": "users", "display": "user_name"}},
            "broken": None,
        },
    },
    {"model": "empty", "table": "empty", "fields": {}},
    {"model": "no_fields", "table": "no_fields"},
]


@pytest.mark.parametrize("raw", RAW_SCHEMAS)
def test_normalize_is_idempotent(normalizer, raw):
    once = normalizer.normalize(raw)
    assert normalizer.normalize(once) == once


def test_normalize_does_not_mutate_input(normalizer):
    raw = {"model": "m", "fields": {"flag": {"type": "boolean-tgl"}}}
    normalizer.normalize(raw)
    assert raw == {"model": "m", "fields": {"flag": {"type": "boolean-tgl"}}}


@pytest.mark.parametrize("junk", [None, "not a schema", [1, 2], {"fields": "nope"}, {"fields": [1]}])
def test_normalize_never_raises(normalizer, junk):
    normalizer.normalize(junk)


def test_lookup_spellings_are_equivalent(normalizer):
    flat = {"type": "smartlookup", "lookup_model": "customers", "lookup_id": "id", "lookup_desc": "name"}
    nested = {"type": "smartlookup", "lookup": {"model": "customers", "id": "id", "desc": "name"}}
    shorthand = {"type": "smartlookup", "model": "customers", "id": "id", "desc": "name"}

    results = [
        normalizer.normalize({"model": "orders", "fields": {"customer_id": spec}})["fields"]["customer_id"]
        for spec in (flat, nested, shorthand)
    ]

    for field in results:
        assert field["lookup_model"] == "customers"
        assert field["lookup_id"] == "id"
        assert field["lookup_desc"] == "name"
        assert field["lookup"] == {"model": "customers", "id": "id", "desc": "name"}


def test_lookup_flat_keys_take_precedence(normalizer):
    schema = {
        "model": "orders",
        "fields": {
            "customer_id": {
                "type": "smartlookup",
                "lookup_model": "clients",
                "lookup": {"model": "customers", "desc": "title"},
                "desc": "label",
            }
        },
    }

    field = normalizer.normalize(schema)["fields"]["customer_id"]

    assert field["lookup_model"] == "clients"
    assert field["lookup_desc"] == "title"
    assert field["lookup_id"] == "id"


def test_lookup_defaults_for_bare_smartlookup(normalizer):
    field = normalizer.normalize({"model": "m", "fields": {"x": {"type": "smartlookup"}}})["fields"]["x"]
    assert field["lookup_id"] == "id"
    assert field["lookup_desc"] == "name"
    assert field["lookup_model"] is None


def test_orm_synonyms(normalizer):
    schema = normalizer.normalize(
        {
            "model": "m",
            "softDelete": True,
            "fields": {
                "id": {"type": "integer", "autoIncrement": True, "primaryKey": True},
                "title": {"type": "string", "nullable": False, "visibleIn": ["list"]},
                "note": {"type": "text", "required": False, "defaultValue": "n/a", "length": 100},
            },
        }
    )

    assert schema["soft_delete"] is True
    fields = schema["fields"]
    assert fields["id"]["auto_increment"] is True
    assert fields["id"]["primary"] is True
    assert fields["title"]["required"] is True
    assert fields["title"]["show_in"] == ["list"]
    assert fields["note"]["nullable"] is True
    assert fields["note"]["default"] == "n/a"
    assert fields["note"]["validation"]["length"] == {"max": 100}


def test_references_with_display_become_smartlookup(normalizer):
    fields = normalizer.normalize(
        {
            "model": "m",
            "fields": {
                "owner_id": {"type": "integer", "references": {"model": "users", "display": "user_name"}},
                "parent_id": {"type": "integer", "references": {"model": "m"}},
            },
        }
    )["fields"]

    assert fields["owner_id"]["type"] == "smartlookup"
    assert fields["owner_id"]["lookup_model"] == "users"
    assert fields["owner_id"]["lookup_desc"] == "user_name"
    assert fields["parent_id"]["type"] == "integer"


def test_form_expands_to_create_and_edit(normalizer):
    field = normalizer.normalize({"model": "m", "fields": {"x": {"show_in": ["detail", "form"]}}})["fields"]["x"]
    assert field["show_in"] == ["create", "edit", "detail"]
    assert field["editable"] is True
    assert field["listable"] is False
    assert field["viewable"] is True


def test_legacy_flags_derive_show_in(normalizer):
    fields = normalizer.normalize(
        {
            "model": "m",
            "fields": {
                "plain": {"type": "string"},
                "hidden": {"type": "string", "listable": False, "viewable": False},
                "locked": {"type": "string", "readonly": True},
                "id": {"type": "integer", "auto_increment": True},
                "secret": {"type": "password"},
            },
        }
    )["fields"]

    assert fields["plain"]["show_in"] == ["list", "create", "edit", "detail"]
    assert fields["hidden"]["show_in"] == ["create", "edit"]
    assert fields["locked"]["show_in"] == ["list", "detail"]
    assert fields["id"]["show_in"] == ["list", "detail"]
    assert fields["secret"]["show_in"] == ["create", "edit"]


def test_boolean_suffixes(normalizer):
    fields = normalizer.normalize(
        {
            "model": "m",
            "fields": {
                "a": {"type": "boolean-tgl"},
                "b": {"type": "boolean-chk"},
                "c": {"type": "boolean-sel"},
                "d": {"type": "boolean-yn"},
                "e": {"type": "boolean"},
                "f": {"type": "boolean-tgl", "ui": "select"},
            },
        }
    )["fields"]

    assert {name: (f["type"], f["ui"]) for name, f in fields.items()} == {
        "a": ("boolean", "toggle"),
        "b": ("boolean", "checkbox"),
        "c": ("boolean", "select"),
        "d": ("boolean", "select"),
        "e": ("boolean", "checkbox"),
        "f": ("boolean", "select"),
    }


def test_missing_type_defaults_to_string(normalizer):
    field = normalizer.normalize({"model": "m", "fields": {"x": {}}})["fields"]["x"]
    assert field["type"] == "string"
