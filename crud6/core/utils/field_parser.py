from typing import Any, Dict, Optional, Tuple

from crud6.core.schemas.fields import FieldType
from crud6.core.utils.utils import title_from_name


class FieldParser:
    """Parse ``name:type[!|?][=default]`` field definitions into schema field specs."""

    # Common type mappings
    TYPE_MAPPINGS = {
        "str": FieldType.STRING,
        "string": FieldType.STRING,
        "int": FieldType.INTEGER,
        "integer": FieldType.INTEGER,
        "float": FieldType.FLOAT,
        "decimal": FieldType.DECIMAL,
        "bool": FieldType.BOOLEAN,
        "boolean": FieldType.BOOLEAN,
        "date": FieldType.DATE,
        "datetime": FieldType.DATETIME,
        "text": FieldType.TEXT,
        "textarea": FieldType.TEXTAREA,
        "json": FieldType.JSON,
        "dict": FieldType.JSON,
        "email": FieldType.EMAIL,
        "password": FieldType.PASSWORD,
        "url": FieldType.URL,
        "phone": FieldType.PHONE,
        "lookup": FieldType.SMARTLOOKUP,
        "smartlookup": FieldType.SMARTLOOKUP,
    }

    @classmethod
    def parse_fields(cls, definitions: str) -> Dict[str, Dict[str, Any]]:
        """Parse a comma separated list of field definitions."""
        fields: Dict[str, Dict[str, Any]] = {}
        for definition in definitions.split(","):
            if not definition.strip():
                continue
            name, spec = cls.parse_field(definition)
            fields[name] = spec
        return fields

    @classmethod
    def parse_field(cls, field_definition: str) -> Tuple[str, Dict[str, Any]]:
        """
        Parse a field definition string.

        Args:
            field_definition: "name", "name:type", "name:type!" (required),
                "name:type?" (nullable) or any of those with "=default"

        Returns:
            (field name, field spec)
        """
        # Clean the input
        field_definition = field_definition.strip()

        # Split field name and type/options
        if ":" not in field_definition:
            return field_definition, cls._create_field_spec(field_definition, "string")

        name_part, type_part = field_definition.split(":", 1)
        field_name = name_part.strip()

        # Handle default values
        default_value = None
        if "=" in type_part:
            type_part, default_value = type_part.split("=", 1)
            default_value = default_value.strip()

        return field_name, cls._create_field_spec(field_name, type_part.strip(), default_value)

    @classmethod
    def _create_field_spec(
        cls, field_name: str, field_type: str, default_value: Optional[str] = None
    ) -> Dict[str, Any]:
        required = field_type.endswith("!")
        nullable = field_type.endswith("?")
        base = field_type.rstrip("!?").strip().lower()

        resolved = cls.TYPE_MAPPINGS.get(base, FieldType.STRING)
        spec: Dict[str, Any] = {
            "type": resolved.value,
            "label": title_from_name(field_name),
        }

        # Foreign key pattern: integer columns ending in _id
        if field_name.endswith("_id") and resolved in (FieldType.INTEGER, FieldType.SMARTLOOKUP):
            spec["type"] = FieldType.SMARTLOOKUP.value
            spec["lookup"] = {"model": f"{field_name[:-3]}s", "id": "id", "desc": "name"}
            spec["label"] = title_from_name(field_name[:-3])

        if required:
            spec["required"] = True
        elif nullable:
            spec["nullable"] = True

        if default_value is not None:
            spec["default"] = cls._parse_default(spec["type"], default_value)

        if resolved in (FieldType.STRING, FieldType.EMAIL):
            spec["sortable"] = True
            spec["filterable"] = True
            spec["searchable"] = True

        return spec

    @staticmethod
    def _parse_default(field_type: str, value: str) -> Any:
        if field_type == FieldType.BOOLEAN.value:
            return value.lower() in ("1", "true", "yes", "on")
        if field_type == FieldType.INTEGER.value:
            try:
                return int(value)
            except ValueError:
                return value
        if field_type in (FieldType.FLOAT.value, FieldType.DECIMAL.value):
            try:
                return float(value)
            except ValueError:
                return value
        return value

    @classmethod
    def build_schema(
        cls,
        model: str,
        table: str,
        fields: Dict[str, Dict[str, Any]],
        primary_key: str = "id",
    ) -> Dict[str, Any]:
        """Assemble a schema document for a model."""
        ordered: Dict[str, Dict[str, Any]] = {}
        if primary_key not in fields:
            ordered[primary_key] = {
                "type": FieldType.INTEGER.value,
                "label": "ID",
                "auto_increment": True,
                "readonly": True,
                "sortable": True,
                "show_in": ["list", "detail"],
            }
        ordered.update(fields)

        return {
            "model": model,
            "title": title_from_name(model),
            "singular_title": title_from_name(model.rstrip("s")),
            "table": table,
            "primary_key": primary_key,
            "timestamps": True,
            "soft_delete": False,
            "default_sort": {primary_key: "asc"},
            "fields": ordered,
        }

    @classmethod
    def spec_from_column(cls, column: Dict[str, Any], primary_key: bool = False) -> Dict[str, Any]:
        """Derive a field spec from a column as reported by SQLAlchemy inspection."""
        type_name = str(column["type"]).lower()
        if "bool" in type_name:
            base = "boolean"
        elif "int" in type_name:
            base = "integer"
        elif any(name in type_name for name in ("float", "real", "double", "numeric", "decimal")):
            base = "float"
        elif "datetime" in type_name or "timestamp" in type_name:
            base = "datetime"
        elif "date" in type_name:
            base = "date"
        elif "json" in type_name:
            base = "json"
        elif "text" in type_name:
            base = "text"
        else:
            base = "string"

        spec = cls._create_field_spec(column["name"], base)
        if primary_key:
            spec.update({"auto_increment": base == "integer", "readonly": True, "sortable": True})
            spec["show_in"] = ["list", "detail"]
        elif not column.get("nullable", True):
            spec["required"] = True
        return spec
