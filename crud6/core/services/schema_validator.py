from typing import Any

from crud6.core.exceptions import SchemaValidationError


class SchemaValidator:
    """Structural checks run on a raw schema before it is normalized."""

    REQUIRED_KEYS = ("model", "table", "fields")

    def validate(self, schema: Any, model: str) -> None:
        if not isinstance(schema, dict):
            raise SchemaValidationError(f"Schema for model '{model}' must be a JSON object")

        for key in self.REQUIRED_KEYS:
            if schema.get(key) in (None, ""):
                raise SchemaValidationError(
                    f"Schema for model '{model}' is missing required field: {key}"
                )

        if schema["model"] != model:
            raise SchemaValidationError(
                f"Schema model name '{schema['model']}' does not match requested model '{model}'"
            )

        if not isinstance(schema["table"], str):
            raise SchemaValidationError(f"Schema for model '{model}' has a non-string 'table'")

        if not isinstance(schema["fields"], dict) or not schema["fields"]:
            raise SchemaValidationError(
                f"Schema for model '{model}' must have a non-empty 'fields' object"
            )

        self._validate_relationships(schema, model)

        details = schema.get("details")
        if details is not None and not isinstance(details, list):
            raise SchemaValidationError(f"Schema for model '{model}' has a non-list 'details'")

    @staticmethod
    def _validate_relationships(schema: dict, model: str) -> None:
        relationships = schema.get("relationships")
        if relationships is None:
            return
        if not isinstance(relationships, list):
            raise SchemaValidationError(
                f"Schema for model '{model}' has a non-list 'relationships'"
            )

        seen = set()
        for relationship in relationships:
            name = relationship.get("name") if isinstance(relationship, dict) else None
            if not name:
                raise SchemaValidationError(
                    f"Schema for model '{model}' declares a relationship without a name"
                )
            if name in seen:
                raise SchemaValidationError(
                    f"Schema for model '{model}' declares relationship '{name}' more than once"
                )
            seen.add(name)
