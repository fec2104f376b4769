# crud6/core/schemas/fields.py
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from crud6.core.exceptions import RelationshipConfigurationError


class FieldType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    TEXT = "text"
    TEXTAREA = "textarea"
    DATE = "date"
    DATETIME = "datetime"
    PASSWORD = "password"
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"
    ZIP = "zip"
    JSON = "json"
    ADDRESS = "address"
    SMARTLOOKUP = "smartlookup"
    MULTISELECT = "multiselect"


class Context(str, Enum):
    META = "meta"
    LIST = "list"
    CREATE = "create"
    EDIT = "edit"
    FORM = "form"
    DETAIL = "detail"
    FULL = "full"


# Order in which show_in entries are kept when synthesized from legacy flags
VISIBILITY_CONTEXTS = ("list", "create", "edit", "detail")

# Fields of these types are never persisted
VIRTUAL_FIELD_TYPES = frozenset({FieldType.MULTISELECT.value})

CRUD_ACTIONS = ("read", "create", "update", "delete")

BOOLEAN_UI_SUFFIXES = {
    "tgl": "toggle",
    "chk": "checkbox",
    "sel": "select",
    "yn": "select",
}

RELATIONSHIP_EVENTS = ("on_create", "on_update", "on_delete")


class AttachItem(BaseModel):
    related_id: Any
    pivot_data: Dict[str, Any] = Field(default_factory=dict)


class EventActions(BaseModel):
    """Declarative pivot mutations run on one lifecycle event."""

    attach: List[AttachItem] = Field(default_factory=list)
    sync: Optional[Union[bool, str]] = None
    detach: Optional[Union[Literal["all"], List[Any]]] = None


class _RelationshipBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    model: Optional[str] = None
    title: Optional[str] = None
    actions: Dict[str, EventActions] = Field(default_factory=dict)

    @property
    def related_model(self) -> str:
        """Logical name of the related model."""
        return self.model or self.name


class OneToManySpec(_RelationshipBase):
    type: Literal["one_to_many"] = "one_to_many"
    foreign_key: str
    list_fields: Optional[List[str]] = None


class ManyToManySpec(_RelationshipBase):
    type: Literal["many_to_many"] = "many_to_many"
    pivot_table: str
    foreign_key: str
    related_key: str


class ThroughSpec(_RelationshipBase):
    type: Literal["belongs_to_many_through"] = "belongs_to_many_through"
    through: str
    first_pivot_table: str
    first_foreign_key: str
    first_related_key: str
    second_pivot_table: str
    second_foreign_key: str
    second_related_key: str


RelationshipSpec = Annotated[
    Union[OneToManySpec, ManyToManySpec, ThroughSpec],
    Field(discriminator="type"),
]

_relationship_adapter = TypeAdapter(RelationshipSpec)


class DetailSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str
    title: Optional[str] = None
    list_fields: Optional[List[str]] = None
    foreign_key: Optional[str] = None
    cascade_delete: bool = True
    cascade_delete_mode: Literal["auto", "hard"] = "auto"


def infer_relationship_type(config: Dict[str, Any]) -> str:
    """Work out the variant of a relationship declared without a type."""
    if config.get("type"):
        return config["type"]
    if "through" in config:
        return "belongs_to_many_through"
    if "pivot_table" in config:
        return "many_to_many"
    if "foreign_key" in config:
        return "one_to_many"
    return "many_to_many"


def parse_relationship(config: Any) -> Union[OneToManySpec, ManyToManySpec, ThroughSpec]:
    """Parse a raw relationship declaration into its tagged variant."""
    if not isinstance(config, dict):
        raise RelationshipConfigurationError(
            f"Relationship declaration must be an object, got {type(config).__name__}"
        )
    data = dict(config)
    data["type"] = infer_relationship_type(data)
    try:
        return _relationship_adapter.validate_python(data)
    except ValidationError as e:
        name = data.get("name", "<unnamed>")
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise RelationshipConfigurationError(
            f"Relationship '{name}' has an invalid configuration: {problems}"
        ) from e


def parse_detail(config: Any) -> DetailSpec:
    if not isinstance(config, dict):
        raise RelationshipConfigurationError("Detail declaration must be an object")
    try:
        return DetailSpec.model_validate(config)
    except ValidationError as e:
        raise RelationshipConfigurationError(
            f"Detail '{config.get('model', '<unnamed>')}' has an invalid configuration: {e}"
        ) from e
