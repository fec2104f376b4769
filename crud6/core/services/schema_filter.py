"""
Per-context schema projection.

``full`` (or no context) returns the schema untouched. A single known context
returns base metadata merged with that context's projection. A comma list
returns base metadata plus a ``contexts`` map with one projection per known
context name.
"""
import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from crud6.core.schemas.fields import Context, FieldType

logger = logging.getLogger(__name__)

LIST_FIELD_KEYS = ("width", "field_template")
FORM_FIELD_KEYS = (
    "validation",
    "placeholder",
    "description",
    "default",
    "icon",
    "rows",
    "show_in",
)
SMARTLOOKUP_KEYS = ("lookup_model", "lookup_id", "lookup_desc", "lookup", "model", "id", "desc")
DETAIL_FIELD_KEYS = ("description", "field_template", "default")
DETAIL_SCHEMA_KEYS = (
    "detail",
    "details",
    "actions",
    "relationships",
    "detail_editable",
    "render_mode",
    "title_field",
)


class SchemaFilter:
    """Reduce a normalized schema to what one presentation context needs."""

    def __init__(self):
        self._projections: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            Context.META.value: lambda schema: {},
            Context.LIST.value: self.list_context,
            Context.CREATE.value: lambda schema: self.form_context(schema, Context.CREATE.value),
            Context.EDIT.value: lambda schema: self.form_context(schema, Context.EDIT.value),
            Context.FORM.value: self.combined_form_context,
            Context.DETAIL.value: self.detail_context,
        }

    def filter_for_context(self, schema: Dict[str, Any], context: Optional[str] = None) -> Dict[str, Any]:
        """Filter a schema for a context, a comma list of contexts, or none."""
        if context is None or context == Context.FULL.value or not context.strip():
            logger.debug("Returning full schema for '%s'", schema.get("model"))
            return copy.deepcopy(schema)

        if "," in context:
            names = [name.strip() for name in context.split(",") if name.strip()]
            return self.filter_for_contexts(schema, names)

        return self.filter_for_single_context(schema, context.strip())

    def filter_for_single_context(self, schema: Dict[str, Any], context: str) -> Dict[str, Any]:
        projection = self.context_data(schema, context)
        if projection is None:
            # Unknown context names fall back to the whole schema
            logger.warning(
                "Unknown schema context '%s' for '%s'; returning full schema",
                context,
                schema.get("model"),
            )
            return copy.deepcopy(schema)

        filtered = self.base_metadata(schema)
        filtered.update(projection)
        return filtered

    def filter_for_contexts(self, schema: Dict[str, Any], contexts: List[str]) -> Dict[str, Any]:
        filtered = self.base_metadata(schema)
        if "actions" in schema:
            filtered["actions"] = copy.deepcopy(schema["actions"])

        filtered["contexts"] = {}
        for context in contexts:
            projection = self.context_data(schema, context)
            if projection is None:
                logger.debug("Skipping unknown context '%s' in context list", context)
                continue
            filtered["contexts"][context] = projection

        logger.debug(
            "Filtered '%s' for contexts %s",
            schema.get("model"),
            list(filtered["contexts"]),
        )
        return filtered

    def knows(self, context: str) -> bool:
        return context in self._projections

    def context_data(self, schema: Dict[str, Any], context: str) -> Optional[Dict[str, Any]]:
        """Get one context's projection, or None for an unknown context."""
        projection = self._projections.get(context)
        if projection is None:
            return None
        return projection(schema)

    @staticmethod
    def base_metadata(schema: Dict[str, Any]) -> Dict[str, Any]:
        model = schema.get("model", "unknown")
        title = schema.get("title") or model.capitalize()
        base = {
            "model": model,
            "title": title,
            "singular_title": schema.get("singular_title") or title,
            "primary_key": schema.get("primary_key", "id"),
        }
        for key in ("title_field", "description", "permissions"):
            if key in schema:
                base[key] = copy.deepcopy(schema[key])
        return base

    # ----------------- PROJECTIONS ----------------- #
    def list_context(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        fields = {}
        for name, field in _fields(schema).items():
            if Context.LIST.value not in field.get("show_in", []):
                continue

            projected = {
                "type": field.get("type", FieldType.STRING.value),
                "label": field.get("label", name),
                "sortable": field.get("sortable", False),
                "filterable": field.get("filterable", False),
            }
            _copy_keys(field, projected, LIST_FIELD_KEYS)
            if field.get("filterable") and "filter_type" in field:
                projected["filter_type"] = field["filter_type"]
            fields[name] = projected

        data = {"fields": fields, "default_sort": copy.deepcopy(schema.get("default_sort", {}))}
        if "actions" in schema:
            data["actions"] = copy.deepcopy(schema["actions"])
        return data

    def form_context(self, schema: Dict[str, Any], context: str) -> Dict[str, Any]:
        fields = {}
        for name, field in _fields(schema).items():
            if context not in field.get("show_in", []):
                continue

            projected = {
                "type": field.get("type", FieldType.STRING.value),
                "label": field.get("label", name),
                "required": field.get("required", False),
                "editable": field.get("editable", True),
                "readonly": field.get("readonly", False),
            }
            _copy_keys(field, projected, FORM_FIELD_KEYS)
            if projected["type"] == FieldType.SMARTLOOKUP.value:
                _copy_keys(field, projected, SMARTLOOKUP_KEYS)
            fields[name] = projected

        return {"fields": fields}

    def combined_form_context(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        """Union of the create and edit projections; create wins on overlap."""
        fields = dict(self.form_context(schema, Context.CREATE.value)["fields"])
        for name, field in self.form_context(schema, Context.EDIT.value)["fields"].items():
            fields.setdefault(name, field)
        return {"fields": fields}

    def detail_context(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        """Every field, whatever its show_in, plus the related-data config."""
        fields = {}
        for name, field in _fields(schema).items():
            field_type = field.get("type", FieldType.STRING.value)
            readonly = field.get("readonly", field_type == FieldType.PASSWORD.value)

            projected = {
                "type": field_type,
                "label": field.get("label", name),
                "editable": field.get("editable", not readonly),
                "readonly": readonly,
            }
            _copy_keys(field, projected, DETAIL_FIELD_KEYS)
            fields[name] = projected

        data = {"fields": fields}
        _copy_keys(schema, data, DETAIL_SCHEMA_KEYS)
        return data


def _fields(schema: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    fields = schema.get("fields")
    if not isinstance(fields, dict):
        return {}
    return {name: field for name, field in fields.items() if isinstance(field, dict)}


def _copy_keys(source: Dict[str, Any], target: Dict[str, Any], keys) -> None:
    for key in keys:
        if key in source and source[key] is not None:
            target[key] = copy.deepcopy(source[key])
