import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ConfigDict, EmailStr, Field, ValidationError, create_model

from crud6.core.exceptions import ValidationFailed
from crud6.core.models.dynamic_model import cast_for_type
from crud6.core.schemas.fields import VIRTUAL_FIELD_TYPES, FieldType

logger = logging.getLogger(__name__)

# (field name, value) -> True when another record already holds the value
UniqueCheck = Callable[[str, Any], Awaitable[bool]]


class ValidationService:
    """Validate request data against the rules a schema declares."""

    TYPE_MAPPINGS = {
        "int": int,
        "float": float,
        "bool": bool,
        "date": date,
        "datetime": datetime,
        "json": Any,
        "string": str,
    }

    async def validate(
        self,
        schema: Dict[str, Any],
        data: Dict[str, Any],
        context: str = "create",
        unique_check: Optional[UniqueCheck] = None,
        only: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        """
        Validate data for a create or edit request.

        Returns the validated values of the fields present in the request.
        Raises ValidationFailed carrying every violation found.
        """
        partial = context != "create"
        fields = self._fields_for(schema, context, only)
        model = self._build_model(schema.get("model", "Record"), fields, partial)

        errors: Dict[str, List[str]] = {}
        values: Dict[str, Any] = {}
        try:
            values = model.model_validate(data).model_dump(exclude_unset=True, by_alias=True)
        except ValidationError as e:
            for error in e.errors():
                name = str(error["loc"][0]) if error["loc"] else "__root__"
                errors.setdefault(name, []).append(error["msg"])

        for name, spec in fields.items():
            if name in errors or not self._is_required(spec):
                continue
            if name in data and self._is_empty(data[name]):
                errors.setdefault(name, []).append("Field is required")

        if unique_check is not None:
            for name, spec in fields.items():
                rules = spec.get("validation") or {}
                if not rules.get("unique") or name in errors:
                    continue
                value = values.get(name)
                if self._is_empty(value):
                    continue
                if await unique_check(name, value):
                    errors.setdefault(name, []).append("Value has already been taken")

        if errors:
            logger.info(
                "Validation failed for '%s' (%s): %s",
                schema.get("model"),
                context,
                sorted(errors),
            )
            raise ValidationFailed(errors)

        return values

    async def validate_field(
        self,
        schema: Dict[str, Any],
        name: str,
        value: Any,
        unique_check: Optional[UniqueCheck] = None,
    ) -> Any:
        """Validate a single field value for a single-field update."""
        values = await self.validate(
            schema, {name: value}, context="field", unique_check=unique_check, only=[name]
        )
        return values.get(name, value)

    # ----------------- HELPERS ----------------- #
    @staticmethod
    def _fields_for(
        schema: Dict[str, Any], context: str, only: Optional[Iterable[str]]
    ) -> Dict[str, Dict[str, Any]]:
        fields = schema.get("fields") or {}
        if only is not None:
            return {name: fields[name] for name in only if name in fields}

        selected = {}
        for name, spec in fields.items():
            if spec.get("auto_increment") or spec.get("computed"):
                continue
            show_in = spec.get("show_in") or []
            if context == "create" and "create" not in show_in:
                continue
            if context != "create" and "edit" not in show_in:
                continue
            selected[name] = spec
        return selected

    @classmethod
    def _build_model(
        cls, model_name: str, fields: Dict[str, Dict[str, Any]], partial: bool
    ) -> type:
        # Schema field names may collide with BaseModel attributes, so they are aliases
        definitions: Dict[str, Tuple[Any, Any]] = {}
        for index, (name, spec) in enumerate(fields.items()):
            annotation, constraints = cls._field_rules(spec)
            if partial or not cls._is_required(spec):
                definitions[f"field_{index}"] = (
                    Optional[annotation],
                    Field(None, alias=name, **constraints),
                )
            else:
                definitions[f"field_{index}"] = (annotation, Field(..., alias=name, **constraints))

        return create_model(
            f"{model_name.title().replace('_', '')}Input",
            __config__=ConfigDict(extra="ignore"),
            **definitions,
        )

    @classmethod
    def _field_rules(cls, spec: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        """Get the annotation and Field constraints for a field spec."""
        field_type = spec.get("type") or FieldType.STRING.value
        rules = spec.get("validation") if isinstance(spec.get("validation"), dict) else {}

        if field_type in VIRTUAL_FIELD_TYPES:
            return List[Any], {}
        if field_type == FieldType.SMARTLOOKUP.value:
            annotation: Any = Union[int, str]
        else:
            annotation = cls.TYPE_MAPPINGS[cast_for_type(field_type)]

        constraints: Dict[str, Any] = {}
        length = rules.get("length")
        if isinstance(length, dict) and annotation is str:
            if length.get("min") is not None:
                constraints["min_length"] = length["min"]
            if length.get("max") is not None:
                constraints["max_length"] = length["max"]

        bounds = rules.get("range") if isinstance(rules.get("range"), dict) else rules
        if annotation in (int, float):
            if bounds.get("min") is not None:
                constraints["ge"] = bounds["min"]
            if bounds.get("max") is not None:
                constraints["le"] = bounds["max"]

        pattern = rules.get("regex") or rules.get("pattern")
        if pattern and annotation is str:
            constraints["pattern"] = pattern

        if (rules.get("email") or field_type == FieldType.EMAIL.value) and annotation is str:
            annotation = EmailStr

        return annotation, constraints

    @staticmethod
    def _is_required(spec: Dict[str, Any]) -> bool:
        rules = spec.get("validation") if isinstance(spec.get("validation"), dict) else {}
        return bool(spec.get("required") or rules.get("required"))

    @staticmethod
    def _is_empty(value: Any) -> bool:
        return value is None or (isinstance(value, str) and not value.strip())
