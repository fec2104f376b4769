import pytest

from crud6.core.services.schema_filter import SchemaFilter


@pytest.fixture
def schema_filter():
    return SchemaFilter()


@pytest.fixture
def users_schema(schema_service):
    return schema_service.get_schema("users")


@pytest.mark.parametrize("context", ["list", "create", "edit"])
def test_context_covers_exactly_the_visible_fields(schema_filter, users_schema, context):
    filtered = schema_filter.filter_for_context(users_schema, context)

    expected = {name for name, field in users_schema["fields"].items() if context in field["show_in"]}
    assert set(filtered["fields"]) == expected


def test_detail_context_includes_every_field(schema_filter, users_schema):
    filtered = schema_filter.filter_for_context(users_schema, "detail")

    assert set(filtered["fields"]) == set(users_schema["fields"])
    assert filtered["details"] == users_schema["details"]
    assert filtered["relationships"] == users_schema["relationships"]
    assert filtered["fields"]["password"]["readonly"] is True


def test_form_is_union_of_create_and_edit(schema_filter, users_schema):
    form = schema_filter.filter_for_context(users_schema, "form")["fields"]
    create = schema_filter.filter_for_context(users_schema, "create")["fields"]
    edit = schema_filter.filter_for_context(users_schema, "edit")["fields"]

    assert set(form) == set(create) | set(edit)


def test_multi_context_matches_single_contexts(schema_filter, users_schema):
    combined = schema_filter.filter_for_context(users_schema, "list,form")

    assert combined["contexts"]["list"]["fields"] == schema_filter.filter_for_context(users_schema, "list")["fields"]
    assert combined["contexts"]["form"]["fields"] == schema_filter.filter_for_context(users_schema, "form")["fields"]
    assert combined["actions"] == users_schema["actions"]
    assert "fields" not in combined


def test_multi_context_skips_unknown_names(schema_filter, users_schema):
    combined = schema_filter.filter_for_context(users_schema, "list, bogus")
    assert list(combined["contexts"]) == ["list"]


def test_unknown_single_context_returns_full_schema(schema_filter, users_schema):
    assert schema_filter.filter_for_context(users_schema, "bogus") == users_schema


@pytest.mark.parametrize("context", [None, "", "full"])
def test_full_context_returns_schema(schema_filter, users_schema, context):
    assert schema_filter.filter_for_context(users_schema, context) == users_schema


def test_meta_context_has_no_fields(schema_filter, users_schema):
    meta = schema_filter.filter_for_context(users_schema, "meta")

    assert "fields" not in meta
    assert meta["model"] == "users"
    assert meta["title"] == "Users"
    assert meta["singular_title"] == "User"
    assert meta["primary_key"] == "id"
    assert meta["permissions"]["read"] == "uri_users"


def test_list_projection_keys(schema_filter, users_schema):
    listed = schema_filter.filter_for_context(users_schema, "list")

    assert listed["fields"]["user_name"] == {
        "type": "string",
        "label": "Username",
        "sortable": True,
        "filterable": True,
    }
    assert listed["default_sort"] == {"user_name": "asc"}
    assert [action["key"] for action in listed["actions"]] == ["toggle_enabled", "reset_password"]


def test_form_projection_carries_lookup_config(schema_filter, schema_service):
    products = schema_service.get_schema("products")
    form = schema_filter.filter_for_context(products, "create")

    category = form["fields"]["category_id"]
    assert category["type"] == "smartlookup"
    assert category["lookup_model"] == "categories"
    assert category["lookup"] == {"model": "categories", "id": "id", "desc": "name"}
    assert category["required"] is False


def test_projection_does_not_share_state_with_schema(schema_filter, users_schema):
    filtered = schema_filter.filter_for_context(users_schema, "detail")
    filtered["details"].append({"model": "x"})
    assert len(users_schema["details"]) == 2
