"""
Schema normalization.

Turns the many accepted spellings of a schema (ORM-style synonyms, nested or
flat lookup configs, legacy visibility booleans, suffixed boolean types) into
one canonical shape. Every pass copies its input, never raises, and can be
applied any number of times with the same result.
"""
import copy
import logging
import re
from typing import Any, Dict, List

from crud6.core.schemas.fields import BOOLEAN_UI_SUFFIXES, VISIBILITY_CONTEXTS, FieldType

logger = logging.getLogger(__name__)

_BOOLEAN_SUFFIX_RE = re.compile(r"^boolean-(tgl|chk|sel|yn)$")

_LOOKUP_KEYS = (
    ("lookup_model", "model"),
    ("lookup_id", "id"),
    ("lookup_desc", "desc"),
)

_LOOKUP_DEFAULTS = {"lookup_id": "id", "lookup_desc": "name"}


class SchemaNormalizer:
    """Ordered pipeline: synonyms -> lookup -> visibility -> boolean UI."""

    def normalize(self, schema: Any) -> Any:
        """Apply every normalization pass in order."""
        if not isinstance(schema, dict):
            return copy.deepcopy(schema)

        schema = self.normalize_orm_attributes(schema)
        schema = self.normalize_lookup_attributes(schema)
        schema = self.normalize_visibility_flags(schema)
        schema = self.normalize_boolean_types(schema)

        logger.debug(
            "Normalized schema for model '%s' (%d fields)",
            schema.get("model", "unknown"),
            len(self._field_specs(schema)),
        )
        return schema

    # ----------------- PASSES ----------------- #
    def normalize_orm_attributes(self, schema: Any) -> Any:
        """Fold ORM-common attribute spellings onto canonical keys."""
        schema = self._prepare(schema)
        if not isinstance(schema, dict):
            return schema

        if "primaryKey" in schema and "primary_key" not in schema:
            schema["primary_key"] = schema["primaryKey"]
        if "softDelete" in schema and "soft_delete" not in schema:
            schema["soft_delete"] = schema["softDelete"]

        for field in self._field_specs(schema):
            # nullable <-> required
            if field.get("nullable") is not None and field.get("required") is None:
                field["required"] = not field["nullable"]
            if field.get("required") is not None and field.get("nullable") is None:
                field["nullable"] = not field["required"]

            if "autoIncrement" in field and "auto_increment" not in field:
                field["auto_increment"] = field["autoIncrement"]
            if "primaryKey" in field and "primary" not in field:
                field["primary"] = field["primaryKey"]
            if "visibleIn" in field and "show_in" not in field:
                field["show_in"] = field["visibleIn"]
            if "defaultValue" in field and "default" not in field:
                field["default"] = field["defaultValue"]

            self._fold_validation(field)
            self._fold_references(field)
            self._fold_ui(field)

        return schema

    def normalize_lookup_attributes(self, schema: Any) -> Any:
        """Reconcile flat, nested and shorthand lookup configs for smartlookup fields."""
        schema = self._prepare(schema)
        if not isinstance(schema, dict):
            return schema

        for field in self._field_specs(schema):
            if not isinstance(field.get("type"), str) or not field["type"]:
                field["type"] = FieldType.STRING.value

            if field["type"] != FieldType.SMARTLOOKUP.value:
                continue

            nested = field.get("lookup") if isinstance(field.get("lookup"), dict) else {}
            for flat_key, short_key in _LOOKUP_KEYS:
                if field.get(flat_key) is not None:
                    continue
                if nested.get(short_key) is not None:
                    field[flat_key] = nested[short_key]
                elif field.get(short_key) is not None:
                    field[flat_key] = field[short_key]

            for flat_key, default in _LOOKUP_DEFAULTS.items():
                if field.get(flat_key) is None:
                    field[flat_key] = default
            if "lookup_model" not in field:
                field["lookup_model"] = None

            field["lookup"] = {
                "model": field["lookup_model"],
                "id": field["lookup_id"],
                "desc": field["lookup_desc"],
            }

        return schema

    def normalize_visibility_flags(self, schema: Any) -> Any:
        """Derive the canonical show_in list for every field."""
        schema = self._prepare(schema)
        if not isinstance(schema, dict):
            return schema

        for field in self._field_specs(schema):
            field_type = field.get("type") or FieldType.STRING.value

            if isinstance(field.get("show_in"), (list, tuple)):
                requested = set()
                for context in field["show_in"]:
                    if context == "form":
                        requested.update(("create", "edit"))
                    elif isinstance(context, str):
                        requested.add(context)
                show_in = [c for c in VISIBILITY_CONTEXTS if c in requested]
            else:
                show_in = self._show_in_from_flags(field, field_type)

            field["show_in"] = show_in
            field["listable"] = "list" in show_in
            field["editable"] = "create" in show_in or "edit" in show_in
            field["viewable"] = "detail" in show_in

        return schema

    def normalize_boolean_types(self, schema: Any) -> Any:
        """Fold boolean-tgl/chk/sel/yn into type boolean plus a ui hint."""
        schema = self._prepare(schema)
        if not isinstance(schema, dict):
            return schema

        for field in self._field_specs(schema):
            field_type = field.get("type")
            if not isinstance(field_type, str):
                continue

            match = _BOOLEAN_SUFFIX_RE.match(field_type)
            if match:
                field["type"] = FieldType.BOOLEAN.value
                if not isinstance(field.get("ui"), str):
                    field["ui"] = BOOLEAN_UI_SUFFIXES[match.group(1)]
            elif field_type == FieldType.BOOLEAN.value and not isinstance(field.get("ui"), str):
                field["ui"] = "checkbox"

        return schema

    # ----------------- HELPERS ----------------- #
    def _prepare(self, schema: Any) -> Any:
        """Copy the schema and coerce the field map into dict-of-dicts."""
        if not isinstance(schema, dict):
            return schema

        schema = copy.deepcopy(schema)
        fields = schema.get("fields")
        if not isinstance(fields, dict):
            return schema

        for name, field in list(fields.items()):
            if isinstance(field, dict):
                continue
            if isinstance(field, str) and field:
                fields[name] = {"type": field}
            else:
                fields[name] = {}
        return schema

    @staticmethod
    def _field_specs(schema: Dict[str, Any]) -> List[Dict[str, Any]]:
        fields = schema.get("fields")
        if not isinstance(fields, dict):
            return []
        return list(fields.values())

    @staticmethod
    def _show_in_from_flags(field: Dict[str, Any], field_type: str) -> List[str]:
        is_password = field_type == FieldType.PASSWORD.value
        generated = bool(field.get("auto_increment") or field.get("computed"))
        listable = field.get("listable", not is_password)
        # Generated values (auto-increment keys, computed fields) are never typed in
        editable = field.get("editable", not generated)
        viewable = field.get("viewable", True)
        readonly = field.get("readonly", False)

        show_in = []
        if listable:
            show_in.append("list")
        if editable and not readonly:
            show_in.extend(("create", "edit"))
        # Password values never appear on the detail view
        if viewable and not is_password:
            show_in.append("detail")
        return show_in

    @staticmethod
    def _fold_validation(field: Dict[str, Any]) -> None:
        validate = field.get("validate")
        validation = field.get("validation")

        if isinstance(validate, dict):
            merged = dict(validate)
            if isinstance(validation, dict):
                merged.update(validation)
            field["validation"] = merged
        elif validation is None and validate is not None:
            field["validation"] = validate

        if "unique" in field:
            rules = field.setdefault("validation", {})
            if isinstance(rules, dict) and "unique" not in rules:
                rules["unique"] = field["unique"]

        if "length" in field:
            rules = field.setdefault("validation", {})
            if isinstance(rules, dict) and "length" not in rules:
                rules["length"] = {"max": field["length"]}

    @staticmethod
    def _fold_references(field: Dict[str, Any]) -> None:
        references = field.get("references")
        if not isinstance(references, dict):
            return

        if "lookup" not in field:
            field["lookup"] = {
                "model": references.get("model", references.get("table")),
                "id": references.get("key", references.get("id", "id")),
                "desc": references.get("display", references.get("desc", "name")),
            }

        # Only an explicit display hint turns a reference into a smartlookup
        has_display = "display" in references or "desc" in references
        if has_display and field.get("type") in (None, FieldType.INTEGER.value):
            field["type"] = FieldType.SMARTLOOKUP.value

    @staticmethod
    def _fold_ui(field: Dict[str, Any]) -> None:
        ui = field.get("ui")
        if not isinstance(ui, dict):
            return

        for key in ("label", "show_in", "sortable", "filterable"):
            if key in ui and key not in field:
                field[key] = ui[key]

        field_type = field.get("type")
        if "widget" in ui and isinstance(field_type, str) and field_type.startswith("boolean"):
            field["ui"] = ui["widget"]
        elif ui.get("type") == "lookup" and field_type in (None, FieldType.INTEGER.value):
            field["type"] = FieldType.SMARTLOOKUP.value
