import json

import pytest
from typer.testing import CliRunner

import cli
from crud6.core.utils.field_parser import FieldParser

runner = CliRunner()


@pytest.fixture
def cli_settings(monkeypatch, schema_dir, db_path):
    monkeypatch.setattr(cli.settings, "SCHEMA_PATH", str(schema_dir))
    monkeypatch.setattr(cli.settings, "SCHEMA_NAMESPACE", "crud6")
    monkeypatch.setattr(cli.settings, "ASYNC_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setattr(cli.settings, "DATABASE_CONNECTIONS", {})
    return cli.settings


@pytest.fixture
def scratch_settings(monkeypatch, tmp_path, cli_settings):
    monkeypatch.setattr(cli.settings, "SCHEMA_PATH", str(tmp_path))
    return tmp_path


def test_list_models(cli_settings):
    result = runner.invoke(cli.app, ["list-models"])

    assert result.exit_code == 0
    assert result.output.split() == ["activities", "categories", "permissions", "products", "roles", "users"]


def test_show_filtered(cli_settings):
    result = runner.invoke(cli.app, ["show", "products", "--context", "form"])

    assert result.exit_code == 0
    assert set(json.loads(result.output)["fields"]) == {"name", "category_id"}


def test_show_unknown_model(cli_settings):
    result = runner.invoke(cli.app, ["show", "ghosts"])
    assert result.exit_code == 1


def test_validate_all(cli_settings):
    result = runner.invoke(cli.app, ["validate"])

    assert result.exit_code == 0
    assert "users: 7 fields, table 'users'" in result.output


def test_validate_reports_broken_schema(scratch_settings):
    directory = scratch_settings / "crud6"
    directory.mkdir()
    (directory / "good.json").write_text(json.dumps({"model": "good", "table": "good", "fields": {"id": "integer"}}))
    (directory / "bad.json").write_text(json.dumps({"model": "bad", "fields": {"id": "integer"}}))

    result = runner.invoke(cli.app, ["validate"])

    assert result.exit_code == 1
    assert "bad: Schema for model 'bad' is missing required field: table" in result.output
    assert "good: 1 fields" in result.output


def test_scaffold(scratch_settings):
    result = runner.invoke(
        cli.app, ["scaffold", "tags", "tags", "--fields", "name:string!,color:string=red,owner_id:int"]
    )

    assert result.exit_code == 0
    schema = json.loads((scratch_settings / "crud6" / "tags.json").read_text())
    assert list(schema["fields"]) == ["id", "name", "color", "owner_id"]
    assert schema["fields"]["owner_id"]["type"] == "smartlookup"

    again = runner.invoke(cli.app, ["scaffold", "tags", "tags"])
    assert again.exit_code == 1


def test_scaffold_rejects_bad_name(scratch_settings):
    assert runner.invoke(cli.app, ["scaffold", "bad-name", "things"]).exit_code == 1


def test_scan(cli_settings):
    result = runner.invoke(cli.app, ["scan", "categories"])

    assert result.exit_code == 0
    schema = json.loads(result.output)
    assert schema["soft_delete"] is True
    assert schema["timestamps"] is False
    assert schema["fields"]["id"]["auto_increment"] is True
    assert schema["fields"]["name"]["required"] is True


def test_scan_missing_table(cli_settings):
    assert runner.invoke(cli.app, ["scan", "nope"]).exit_code == 1


class TestFieldParser:
    @pytest.mark.parametrize(
        "definition, name, expected",
        [
            ("title", "title", {"type": "string"}),
            ("title:str!", "title", {"type": "string", "required": True}),
            ("note:text?", "note", {"type": "text", "nullable": True}),
            ("count:int=3", "count", {"type": "integer", "default": 3}),
            ("active:bool=true", "active", {"type": "boolean", "default": True}),
            ("price:decimal=1.5", "price", {"type": "decimal", "default": 1.5}),
            ("odd:unknowntype", "odd", {"type": "string"}),
        ],
    )
    def test_parse_field(self, definition, name, expected):
        parsed_name, spec = FieldParser.parse_field(definition)

        assert parsed_name == name
        for key, value in expected.items():
            assert spec[key] == value

    def test_foreign_key_becomes_lookup(self):
        _, spec = FieldParser.parse_field("category_id:int")

        assert spec["type"] == "smartlookup"
        assert spec["lookup"] == {"model": "categorys", "id": "id", "desc": "name"}
        assert spec["label"] == "Category"

    def test_build_schema_adds_primary_key(self):
        schema = FieldParser.build_schema("notes", "notes", FieldParser.parse_fields("body:text"))

        assert list(schema["fields"]) == ["id", "body"]
        assert schema["fields"]["id"]["auto_increment"] is True
        assert schema["singular_title"] == "Note"
