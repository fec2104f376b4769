import sqlite3
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from crud6.core.config import Settings
from crud6.core.database import DatabaseManager
from crud6.core.services.schema_service import SchemaService
from crud6.core.services.schema_store import SchemaLocator, SchemaStore
from crud6.main import create_app

SCHEMA_DIR = Path(__file__).resolve().parent.parent / "schema"

DDL = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_name TEXT NOT NULL UNIQUE,
    first_name TEXT,
    email TEXT NOT NULL,
    password TEXT,
    flag_enabled BOOLEAN DEFAULT 1,
    created_at DATETIME,
    updated_at DATETIME
);
CREATE TABLE roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT
);
CREATE TABLE permissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL,
    name TEXT NOT NULL
);
CREATE TABLE role_users (
    user_id INTEGER NOT NULL,
    role_id INTEGER NOT NULL,
    created_at DATETIME
);
CREATE TABLE permission_roles (
    permission_id INTEGER NOT NULL,
    role_id INTEGER NOT NULL
);
CREATE TABLE activities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    type TEXT,
    description TEXT,
    occurred_at DATETIME
);
CREATE TABLE categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    deleted_at DATETIME
);
CREATE TABLE products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT,
    category_id INTEGER,
    created_at DATETIME,
    updated_at DATETIME
);
"""

SEED = """
INSERT INTO users (id, user_name, first_name, email, flag_enabled) VALUES
    (1, 'admin', 'Ada', 'admin@example.com', 1),
    (2, 'alice', 'Alice', 'alice@example.com', 1),
    (3, 'bob', 'Bob', 'bob@example.com', 0);
INSERT INTO roles (id, slug, name) VALUES
    (1, 'site-admin', 'Site Administrator'),
    (2, 'editor', 'Editor'),
    (3, 'viewer', 'Viewer');
INSERT INTO permissions (id, slug, name) VALUES
    (1, 'uri_users', 'View users'),
    (2, 'create_user', 'Create users'),
    (3, 'delete_user', 'Delete users');
INSERT INTO role_users (user_id, role_id) VALUES (1, 1), (2, 2), (2, 3), (3, 3);
INSERT INTO permission_roles (permission_id, role_id) VALUES
    (1, 1), (2, 1), (3, 1), (1, 2), (2, 2), (1, 3);
INSERT INTO activities (id, user_id, type, description, occurred_at) VALUES
    (1, 2, 'sign_in', 'Alice signed in', '2024-01-01 10:00:00'),
    (2, 2, 'update', 'Alice updated her profile', '2024-01-02 11:30:00'),
    (3, 3, 'sign_in', 'Bob signed in', '2024-01-03 09:15:00');
INSERT INTO categories (id, name) VALUES (1, 'Hardware'), (2, 'Software');
INSERT INTO products (id, name, category_id) VALUES
    (1, 'Keyboard', 1), (2, 'Mouse', 1), (3, 'Editor', 2);
"""

REPORTING_DDL = """
CREATE TABLE report_categories (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT);
INSERT INTO report_categories (id, name) VALUES (1, 'Quarterly'), (2, 'Annual'), (3, 'Adhoc');
"""


def _run_script(path: Path, script: str) -> None:
    conn = sqlite3.connect(path)
    try:
        conn.executescript(script)
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def schema_dir() -> Path:
    return SCHEMA_DIR


@pytest.fixture
def schema_service(schema_dir) -> SchemaService:
    return SchemaService(SchemaStore(SchemaLocator(str(schema_dir), "crud6")))


@pytest.fixture
def db_path(tmp_path) -> Path:
    path = tmp_path / "crud6.db"
    _run_script(path, DDL + SEED)
    return path


@pytest.fixture
def reporting_db_path(tmp_path) -> Path:
    path = tmp_path / "reporting.db"
    _run_script(path, REPORTING_DDL)
    return path


@pytest.fixture
def query_db(db_path):
    """Run a read query straight against the test database."""

    def run(sql, params=()):
        conn = sqlite3.connect(db_path)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    return run


@pytest.fixture
async def databases(db_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{db_path}")
    yield manager
    await manager.disconnect()


@pytest.fixture
def app_settings(schema_dir, db_path, reporting_db_path) -> Settings:
    return Settings(
        ASYNC_DATABASE_URL=f"sqlite+aiosqlite:///{db_path}",
        DATABASE_CONNECTIONS={"reporting_db": f"sqlite+aiosqlite:///{reporting_db_path}"},
        SCHEMA_PATH=str(schema_dir),
        SCHEMA_NAMESPACE="crud6",
        SCHEMA_CACHE_ENABLED=False,
        PASSWORD_ROUNDS=4,
    )


@pytest.fixture
def client(app_settings):
    with TestClient(create_app(app_settings)) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"X-User-Id": "1", "X-User-Capabilities": "*"}
