"""
Schema loading.

A schema is looked up on the connection-scoped path first
(``{base}/{namespace}/{connection}/{model}.json``) and then on the default path
(``{base}/{namespace}/{model}.json``). Loaded schemas are validated, given
defaults, normalized and only then published to the cache.
"""
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from crud6.core.exceptions import SchemaNotFound, SchemaValidationError
from crud6.core.schemas.fields import CRUD_ACTIONS
from crud6.core.services.schema_cache import SchemaCache
from crud6.core.services.schema_normalizer import SchemaNormalizer
from crud6.core.services.schema_validator import SchemaValidator

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


class SchemaLocator:
    """Resolve model names to schema resources on disk."""

    def __init__(self, base_path: str, namespace: str = "crud6"):
        self.base_path = Path(base_path)
        self.namespace = namespace

    @property
    def root(self) -> Path:
        return self.base_path / self.namespace

    def candidates(self, model: str, connection: Optional[str] = None) -> List[Path]:
        """Get the lookup paths for a model, most specific first."""
        paths = []
        if connection:
            paths.append(self.root / connection / f"{model}.json")
        paths.append(self.root / f"{model}.json")
        return paths

    def load(
        self, model: str, connection: Optional[str] = None
    ) -> Optional[Tuple[Any, Path, bool]]:
        """
        Read the first schema resource found for a model.

        Returns (raw schema, path, loaded from the connection path) or None.
        """
        if not _NAME_RE.match(model) or (connection and not _NAME_RE.match(connection)):
            logger.debug("Rejected schema lookup for %r@%r", model, connection)
            return None

        for index, path in enumerate(self.candidates(model, connection)):
            if not path.is_file():
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw = json.load(f)
            except json.JSONDecodeError as e:
                raise SchemaValidationError(f"Schema file {path} is not valid JSON: {e}") from e

            logger.debug("Loaded schema for '%s' from %s", model, path)
            return raw, path, bool(connection) and index == 0

        return None

    def list_models(self) -> List[str]:
        """Get the model names of all default-path schemas."""
        if not self.root.is_dir():
            return []
        return sorted(path.stem for path in self.root.glob("*.json"))


class SchemaStore:
    """Load, validate, normalize and cache schemas per (model, connection)."""

    def __init__(
        self,
        locator: SchemaLocator,
        cache: Optional[SchemaCache] = None,
        normalizer: Optional[SchemaNormalizer] = None,
        validator: Optional[SchemaValidator] = None,
    ):
        self.locator = locator
        self.cache = cache or SchemaCache()
        self.normalizer = normalizer or SchemaNormalizer()
        self.validator = validator or SchemaValidator()

    def get_schema(self, model: str, connection: Optional[str] = None) -> Dict[str, Any]:
        """Get the normalized schema for a model."""
        cached = self.cache.get(model, connection)
        if cached is not None:
            return cached

        loaded = self.locator.load(model, connection)
        if loaded is None:
            where = f" (connection '{connection}')" if connection else ""
            raise SchemaNotFound(f"Schema not found for model: {model}{where}")

        raw, path, _ = loaded
        self.validator.validate(raw, model)

        schema = self.apply_defaults(raw)
        # A schema requested for a connection binds to it unless it names its own
        if connection and not schema.get("connection"):
            schema["connection"] = connection

        schema = self.normalizer.normalize(schema)

        self.cache.set(schema, model, connection)
        logger.debug("Schema for '%s' ready (%s)", model, path)
        return self.cache.get(model, connection)

    def apply_defaults(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        """Fill optional top-level keys that the schema does not set."""
        schema = dict(schema)
        schema.setdefault("primary_key", schema.get("primaryKey", "id"))
        schema.setdefault("timestamps", True)
        schema.setdefault("soft_delete", schema.get("softDelete", False))

        permissions = dict(schema.get("permissions") or {})
        for action in CRUD_ACTIONS:
            permissions.setdefault(action, f"{action}.{schema['model']}")
        schema["permissions"] = permissions
        return schema

    def clear_cache(self, model: str, connection: Optional[str] = None) -> None:
        self.cache.clear(model, connection)

    def clear_all(self) -> None:
        self.cache.clear_all()
