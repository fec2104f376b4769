import copy
import dataclasses
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from crud6.core.config import Settings
from crud6.core.exceptions import CRUD6Exception, SchemaNotFound
from crud6.core.models.dynamic_model import DynamicModel, configure_from_schema
from crud6.core.schemas.fields import Context
from crud6.core.services.schema_cache import SchemaCache, TTLMemoryBackend
from crud6.core.services.schema_filter import SchemaFilter
from crud6.core.services.schema_store import SchemaLocator, SchemaStore

logger = logging.getLogger(__name__)

# A single context name, or the sorted known names of a comma list
ContextKey = Union[str, Tuple[str, ...]]


class SchemaService:
    """Request-facing access to schemas, their projections and models."""

    def __init__(self, store: SchemaStore, schema_filter: Optional[SchemaFilter] = None):
        self.store = store
        self.schema_filter = schema_filter or SchemaFilter()
        # (model, connection) -> (cache version, context key -> filtered schema)
        self._filtered: Dict[
            Tuple[str, Optional[str]], Tuple[int, Dict[ContextKey, Dict[str, Any]]]
        ] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchemaService":
        cache = SchemaCache(
            backend=TTLMemoryBackend(),
            ttl=settings.SCHEMA_CACHE_TTL,
            persistent_enabled=settings.SCHEMA_CACHE_ENABLED,
        )
        locator = SchemaLocator(settings.SCHEMA_PATH, settings.SCHEMA_NAMESPACE)
        return cls(SchemaStore(locator, cache=cache))

    # ----------------- SCHEMAS ----------------- #
    def get_schema(self, model: str, connection: Optional[str] = None) -> Dict[str, Any]:
        return self.store.get_schema(model, connection)

    def filter_schema(self, schema: Dict[str, Any], context: Optional[str] = None) -> Dict[str, Any]:
        return self.schema_filter.filter_for_context(schema, context)

    def get_filtered_schema(
        self,
        model: str,
        context: Optional[str] = None,
        connection: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Get a schema filtered for context, reusing earlier filtered results.

        Only known context names are remembered. Unknown names are filtered on
        every call, and cached results are dropped once the underlying schema
        is reloaded.
        """
        schema = self.get_schema(model, connection)
        names = [name.strip() for name in (context or "").split(",") if name.strip()]
        if not names or names == [Context.FULL.value]:
            return self.filter_schema(schema, None)

        key = self._context_key(names)
        if key is None:
            return self.filter_schema(schema, ",".join(names))

        entries = self._entries(model, connection)
        if key in entries:
            logger.debug("Filtered schema cache hit for %s %s", model, key)
            return copy.deepcopy(entries[key])

        if isinstance(key, str):
            narrowed = self._from_superset(entries, key)
            if narrowed is not None:
                logger.debug("Served %s [%s] from a cached superset", model, key)
                entries[key] = narrowed
                return copy.deepcopy(narrowed)
            filtered = self.schema_filter.filter_for_single_context(schema, key)
        else:
            filtered = self.schema_filter.filter_for_contexts(schema, list(key))

        entries[key] = filtered
        return copy.deepcopy(filtered)

    def _context_key(self, names: List[str]) -> Optional[ContextKey]:
        if len(names) == 1:
            return names[0] if self.schema_filter.knows(names[0]) else None
        known = sorted({name for name in names if self.schema_filter.knows(name)})
        return tuple(known) or None

    def _entries(self, model: str, connection: Optional[str]) -> Dict[ContextKey, Dict[str, Any]]:
        version = self.store.cache.version(model, connection)
        cached = self._filtered.get((model, connection))
        if cached is None or cached[0] != version:
            if cached is not None:
                logger.debug("Dropping stale filtered schemas for %s", model)
            cached = (version, {})
            self._filtered[(model, connection)] = cached
        return cached[1]

    @staticmethod
    def _from_superset(entries: Dict[ContextKey, Dict[str, Any]], context: str) -> Optional[Dict[str, Any]]:
        for entry in entries.values():
            contexts = entry.get("contexts")
            if not isinstance(contexts, dict) or context not in contexts:
                continue
            narrowed = {k: v for k, v in entry.items() if k not in ("contexts", "actions")}
            narrowed.update(contexts[context])
            return copy.deepcopy(narrowed)
        return None

    def get_related_schemas(
        self,
        schema: Dict[str, Any],
        context: Optional[str] = None,
        connection: Optional[str] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """Get filtered schemas for every model referenced by details and relationships."""
        related = {}
        for model in self.related_models(schema):
            if model == schema.get("model") or model in related:
                continue
            try:
                related[model] = self.get_filtered_schema(model, context, connection)
            except SchemaNotFound:
                logger.warning(
                    "Schema '%s' references model '%s' which has no schema",
                    schema.get("model"),
                    model,
                )
        return related

    @staticmethod
    def related_models(schema: Dict[str, Any]) -> List[str]:
        models = []
        details = list(schema.get("details") or [])
        if isinstance(schema.get("detail"), dict):
            details.append(schema["detail"])
        for detail in details:
            if isinstance(detail, dict) and detail.get("model"):
                models.append(detail["model"])
        for relationship in schema.get("relationships") or []:
            if isinstance(relationship, dict):
                name = relationship.get("model") or relationship.get("name")
                if name:
                    models.append(name)
        return list(dict.fromkeys(models))

    # ----------------- MODELS ----------------- #
    def get_model(self, model: str, connection: Optional[str] = None) -> DynamicModel:
        """Get a DynamicModel configured from the model's schema."""
        schema = self.get_schema(model, connection)
        config = configure_from_schema(schema)
        # A request-time connection overrides the one baked into the schema
        if connection and config.connection != connection:
            config = dataclasses.replace(config, connection=connection)
        return DynamicModel(config)

    def clear_cache(self, model: str, connection: Optional[str] = None) -> None:
        self.store.clear_cache(model, connection)
        self._filtered.pop((model, connection), None)

    def clear_all(self) -> None:
        self.store.clear_all()
        self._filtered = {}

    def warm(self) -> int:
        """Load every default-path schema into the cache and return how many loaded."""
        loaded = 0
        for model in self.store.locator.list_models():
            try:
                self.get_schema(model)
            except CRUD6Exception as e:
                logger.warning("Could not preload schema '%s': %s", model, e)
                continue
            loaded += 1
        logger.info("Preloaded %d schema(s)", loaded)
        return loaded
