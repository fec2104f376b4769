import asyncio
import json
import os
from typing import Any, Dict, List, Optional

import typer
from sqlalchemy import inspect

from crud6.core.config import settings
from crud6.core.database import create_database_manager
from crud6.core.exceptions import CRUD6Exception
from crud6.core.services.schema_service import SchemaService
from crud6.core.utils.field_parser import FieldParser

app = typer.Typer(help="CLI for schema management.")


# ---------------------------
# Helpers
# ---------------------------
def get_schema_service() -> SchemaService:
    return SchemaService.from_settings(settings)


def get_schema_dir(connection: Optional[str] = None) -> str:
    """Directory holding the schema files of a connection (or the default one)."""
    base = os.path.join(settings.SCHEMA_PATH, settings.SCHEMA_NAMESPACE)
    return os.path.join(base, connection) if connection else base


def write_file(path: str, content: str, force: bool = False):
    """Create a file, refusing to overwrite unless forced."""
    if os.path.exists(path) and not force:
        print(f"❌ {path} already exists. Use --force to overwrite.")
        raise typer.Exit(1)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)
    print(f"✅ Created: {path}")


def dump(data: Any) -> str:
    return json.dumps(data, indent=2, default=str) + "\n"


# ---------------------------
# Commands
# ---------------------------
@app.command("list-models")
def list_models():
    """List the models that have a schema on the default path."""
    models = get_schema_service().store.locator.list_models()
    if not models:
        print(f"No schemas found in {get_schema_dir()}")
        return
    for model in models:
        print(model)


@app.command()
def show(
    model: str,
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Context name or comma list"),
    connection: Optional[str] = typer.Option(None, "--connection", help="Named data source"),
):
    """Print the normalized (optionally filtered) schema of a model."""
    try:
        schema = get_schema_service().get_filtered_schema(model, context, connection)
    except CRUD6Exception as e:
        print(f"❌ {e.detail}")
        raise typer.Exit(1)
    print(dump(schema), end="")


@app.command()
def validate(model: Optional[str] = typer.Argument(None, help="Model to check; all when omitted")):
    """Load, validate and normalize schemas, reporting every failure."""
    service = get_schema_service()
    models: List[str] = [model] if model else service.store.locator.list_models()

    failures = 0
    for name in models:
        try:
            schema = service.get_schema(name)
            service.get_model(name)
        except CRUD6Exception as e:
            failures += 1
            print(f"❌ {name}: {e.detail}")
            continue
        print(f"✅ {name}: {len(schema['fields'])} fields, table '{schema['table']}'")

    if failures:
        raise typer.Exit(1)


@app.command()
def scaffold(
    model: str,
    table: str,
    fields: Optional[str] = typer.Option(None, "--fields", "-f", help="Fields in format 'name:type,name:type!'"),
    connection: Optional[str] = typer.Option(None, "--connection", help="Write under a connection directory"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing schema"),
):
    """Write a new schema file for a model."""
    if not model.isidentifier():
        print("❌ Invalid model name. Use only letters, numbers, and underscores.")
        raise typer.Exit(1)

    field_specs = FieldParser.parse_fields(fields) if fields else {"name": FieldParser.parse_field("name:string!")[1]}
    schema = FieldParser.build_schema(model, table, field_specs)
    if connection:
        schema["connection"] = connection

    write_file(os.path.join(get_schema_dir(connection), f"{model}.json"), dump(schema), force=force)
    print(f"🎉 Schema for '{model}' created with fields: {', '.join(schema['fields'])}")


@app.command()
def scan(
    table: str,
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name; defaults to the table name"),
    connection: Optional[str] = typer.Option(None, "--connection", help="Named data source to inspect"),
    write: bool = typer.Option(False, "--write", help="Save the schema instead of printing it"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing schema"),
):
    """Generate a schema from an existing database table."""
    columns, primary_keys = asyncio.run(_inspect_table(table, connection))
    if not columns:
        print(f"❌ Table '{table}' not found or has no columns.")
        raise typer.Exit(1)

    fields: Dict[str, Dict[str, Any]] = {}
    for column in columns:
        fields[column["name"]] = FieldParser.spec_from_column(column, column["name"] in primary_keys)

    primary_key = primary_keys[0] if primary_keys else "id"
    schema = FieldParser.build_schema(model or table, table, fields, primary_key=primary_key)
    schema["timestamps"] = "created_at" in fields and "updated_at" in fields
    schema["soft_delete"] = "deleted_at" in fields
    if connection:
        schema["connection"] = connection

    if write:
        path = os.path.join(get_schema_dir(connection), f"{model or table}.json")
        write_file(path, dump(schema), force=force)
    else:
        print(dump(schema), end="")


async def _inspect_table(table: str, connection: Optional[str]):
    databases = create_database_manager()
    database = databases.get(connection)
    try:
        async with database.engine.connect() as conn:
            def read(sync_conn):
                inspector = inspect(sync_conn)
                if not inspector.has_table(table):
                    return [], []
                return (
                    inspector.get_columns(table),
                    inspector.get_pk_constraint(table).get("constrained_columns") or [],
                )

            return await conn.run_sync(read)
    finally:
        await databases.disconnect()


if __name__ == "__main__":
    app()
