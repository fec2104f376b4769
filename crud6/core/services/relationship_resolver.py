"""
Relationship resolution.

Turns relationship declarations into live queries between configured
DynamicModel instances. Every relation is bound to one parent row and runs
on the caller's session so pivot mutations share the caller's transaction.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import and_, column, delete, insert, select, table
from sqlalchemy.sql import Select
from sqlmodel.ext.asyncio.session import AsyncSession

from crud6.core.exceptions import (
    RelationshipConfigurationError,
    RecordNotFound,
    SchemaNotFound,
)
from crud6.core.models.dynamic_model import DynamicModel
from crud6.core.schemas.fields import (
    DetailSpec,
    ManyToManySpec,
    OneToManySpec,
    ThroughSpec,
    parse_detail,
    parse_relationship,
)

logger = logging.getLogger(__name__)

RelationshipSpec = Union[OneToManySpec, ManyToManySpec, ThroughSpec]
ModelLoader = Callable[[str], DynamicModel]


class Relation:
    """Query over the rows related to one parent record."""

    kind = "relation"

    def __init__(self, parent: DynamicModel, parent_id: Any, related: DynamicModel):
        self.parent = parent
        self.parent_id = parent_id
        self.related = related

    def query(self) -> Select:
        raise NotImplementedError

    async def get_results(self, session: AsyncSession) -> List[Dict[str, Any]]:
        """Get the related rows as plain dicts."""
        result = await session.exec(self.query())
        return [self.related.cast_row(row) for row in result.mappings().all()]

    # Pivot mutations only make sense for pivot-backed relations
    async def attach(self, session: AsyncSession, ids: Iterable[Any], pivot_data: Optional[Dict[str, Any]] = None) -> List[Any]:
        raise RelationshipConfigurationError(f"Cannot attach records through a {self.kind} relationship")

    async def detach(self, session: AsyncSession, ids: Optional[Iterable[Any]] = None) -> int:
        raise RelationshipConfigurationError(f"Cannot detach records through a {self.kind} relationship")

    async def sync(self, session: AsyncSession, ids: Iterable[Any]) -> Dict[str, List[Any]]:
        raise RelationshipConfigurationError(f"Cannot sync records through a {self.kind} relationship")


class OneToManyRelation(Relation):
    """Rows of the related table whose foreign key equals the parent id."""

    kind = "one_to_many"

    def __init__(
        self,
        parent: DynamicModel,
        parent_id: Any,
        related: DynamicModel,
        foreign_key: str,
        list_fields: Optional[List[str]] = None,
    ):
        super().__init__(parent, parent_id, related)
        if not related.has_column(foreign_key):
            raise RelationshipConfigurationError(
                f"Foreign key '{foreign_key}' is not a column of '{related.name}'"
            )
        self.foreign_key = foreign_key
        self.list_fields = list_fields

    def selected_columns(self) -> List[str]:
        """Projected columns; the related primary key is always included."""
        if not self.list_fields:
            return list(self.related.config.columns)

        names = [name for name in self.list_fields if self.related.has_column(name)]
        skipped = [name for name in self.list_fields if not self.related.has_column(name)]
        if skipped:
            logger.debug("Ignoring non-column list fields %s on '%s'", skipped, self.related.name)

        primary_key = self.related.config.primary_key
        if primary_key not in names:
            names.insert(0, primary_key)
        return names

    def query(self) -> Select:
        columns = [self.related.column(name) for name in self.selected_columns()]
        stmt = select(*columns).where(self.related.column(self.foreign_key) == self.parent_id)
        return self.related.apply_soft_delete_scope(stmt)


class ManyToManyRelation(Relation):
    """Related rows joined through a single pivot table."""

    kind = "many_to_many"

    def __init__(
        self,
        parent: DynamicModel,
        parent_id: Any,
        related: DynamicModel,
        pivot_table: str,
        foreign_key: str,
        related_key: str,
    ):
        super().__init__(parent, parent_id, related)
        self.pivot_table = pivot_table
        self.foreign_key = foreign_key
        self.related_key = related_key

    def pivot(self, *extra_columns: str):
        return table(
            self.pivot_table,
            column(self.foreign_key),
            column(self.related_key),
            *[column(name) for name in extra_columns],
        )

    def query(self) -> Select:
        pivot = self.pivot()
        stmt = (
            select(self.related.table)
            .join(pivot, pivot.c[self.related_key] == self.related.primary_key_column)
            .where(pivot.c[self.foreign_key] == self.parent_id)
        )
        return self.related.apply_soft_delete_scope(stmt)

    async def related_ids(self, session: AsyncSession) -> List[Any]:
        """Get the related ids currently linked in the pivot table."""
        pivot = self.pivot()
        stmt = select(pivot.c[self.related_key]).where(pivot.c[self.foreign_key] == self.parent_id)
        result = await session.exec(stmt)
        return [row[0] for row in result.all()]

    async def attach(
        self,
        session: AsyncSession,
        ids: Iterable[Any],
        pivot_data: Optional[Dict[str, Any]] = None,
    ) -> List[Any]:
        """Link related ids that are not linked yet; returns the ids inserted."""
        pivot_data = pivot_data or {}
        existing = {str(value) for value in await self.related_ids(session)}

        attached = []
        for related_id in ids:
            if str(related_id) in existing:
                continue
            values = {self.foreign_key: self.parent_id, self.related_key: related_id}
            values.update(pivot_data)
            await session.exec(insert(self.pivot(*pivot_data.keys())).values(**values))
            existing.add(str(related_id))
            attached.append(related_id)

        logger.debug(
            "Attached %s to %s %s via %s",
            attached,
            self.parent.config.model,
            self.parent_id,
            self.pivot_table,
        )
        return attached

    async def detach(self, session: AsyncSession, ids: Optional[Iterable[Any]] = None) -> int:
        """Unlink the given related ids, or all of them when ids is None."""
        pivot = self.pivot()
        condition = pivot.c[self.foreign_key] == self.parent_id
        if ids is not None:
            ids = list(ids)
            if not ids:
                return 0
            condition = and_(condition, pivot.c[self.related_key].in_(ids))

        result = await session.exec(delete(pivot).where(condition))
        logger.debug(
            "Detached %s row(s) from %s for %s %s",
            result.rowcount,
            self.pivot_table,
            self.parent.config.model,
            self.parent_id,
        )
        return result.rowcount

    async def sync(self, session: AsyncSession, ids: Iterable[Any]) -> Dict[str, List[Any]]:
        """Make the linked set equal to ids."""
        wanted = list(ids)
        wanted_keys = {str(value) for value in wanted}
        current = await self.related_ids(session)

        to_detach = [value for value in current if str(value) not in wanted_keys]
        if to_detach:
            await self.detach(session, to_detach)
        attached = await self.attach(session, wanted)
        return {"attached": attached, "detached": to_detach}


class ThroughRelation(Relation):
    """Related rows reached through an intermediate model and two pivots."""

    kind = "belongs_to_many_through"

    def __init__(
        self,
        parent: DynamicModel,
        parent_id: Any,
        related: DynamicModel,
        through: DynamicModel,
        spec: ThroughSpec,
    ):
        super().__init__(parent, parent_id, related)
        self.through = through
        self.spec = spec

    def query(self) -> Select:
        spec = self.spec
        first = table(
            spec.first_pivot_table,
            column(spec.first_foreign_key),
            column(spec.first_related_key),
        ).alias("first_pivot")
        second = table(
            spec.second_pivot_table,
            column(spec.second_foreign_key),
            column(spec.second_related_key),
        ).alias("second_pivot")

        stmt = (
            select(self.related.table)
            .distinct()
            .join(second, second.c[spec.second_related_key] == self.related.primary_key_column)
            .join(self.through.table, self.through.primary_key_column == second.c[spec.second_foreign_key])
            .join(first, first.c[spec.first_related_key] == self.through.primary_key_column)
            .where(first.c[spec.first_foreign_key] == self.parent_id)
        )
        stmt = self.through.apply_soft_delete_scope(stmt)
        return self.related.apply_soft_delete_scope(stmt)


class RelationshipResolver:
    """Build Relation objects from relationship and detail declarations."""

    def resolve(
        self,
        parent: DynamicModel,
        parent_id: Any,
        spec: RelationshipSpec,
        related: DynamicModel,
        through: Optional[DynamicModel] = None,
    ) -> Relation:
        _require_model(related, "related", spec.name)
        _require_model(parent, "parent", spec.name)

        if isinstance(spec, ThroughSpec):
            if through is None:
                raise RelationshipConfigurationError(
                    f"Relationship '{spec.name}' requires a configured '{spec.through}' through model"
                )
            _require_model(through, "through", spec.name)
            relation = ThroughRelation(parent, parent_id, related, through, spec)
        elif isinstance(spec, ManyToManySpec):
            relation = ManyToManyRelation(
                parent,
                parent_id,
                related,
                pivot_table=spec.pivot_table,
                foreign_key=spec.foreign_key,
                related_key=spec.related_key,
            )
        elif isinstance(spec, OneToManySpec):
            relation = OneToManyRelation(
                parent,
                parent_id,
                related,
                foreign_key=spec.foreign_key,
                list_fields=spec.list_fields,
            )
        else:
            raise RelationshipConfigurationError(
                f"Unsupported relationship declaration: {type(spec).__name__}"
            )

        logger.debug(
            "Resolved %s relationship '%s' from '%s' to table '%s'",
            relation.kind,
            spec.name,
            parent.config.model,
            related.name,
        )
        return relation

    def resolve_by_name(
        self,
        schema: Dict[str, Any],
        name: str,
        parent: DynamicModel,
        parent_id: Any,
        load_model: ModelLoader,
    ) -> Relation:
        """
        Resolve a relation the way the detail view asks for it.

        A detail with a foreign key is a one-to-many relation and needs no
        relationship entry. Otherwise the name must match a declared
        relationship.
        """
        detail = find_detail(schema, name)
        if detail is not None and detail.foreign_key:
            spec = OneToManySpec(
                name=name,
                model=detail.model,
                foreign_key=detail.foreign_key,
                list_fields=detail.list_fields,
            )
            return self.resolve(parent, parent_id, spec, _load(load_model, detail.model, name))

        spec = find_relationship(schema, name)
        if spec is None:
            if detail is not None:
                raise RelationshipConfigurationError(
                    f"Detail '{name}' on '{schema.get('model')}' has no foreign_key "
                    f"and no matching relationship"
                )
            raise RecordNotFound(
                f"Relationship '{name}' is not declared on model '{schema.get('model')}'"
            )

        related = _load(load_model, spec.related_model, name)
        through = None
        if isinstance(spec, ThroughSpec):
            through = _load(load_model, spec.through, name)
        return self.resolve(parent, parent_id, spec, related, through)


def find_relationship(schema: Dict[str, Any], name: str) -> Optional[RelationshipSpec]:
    """Get the declared relationship called name, parsed into its variant."""
    for config in schema.get("relationships") or []:
        if isinstance(config, dict) and config.get("name") == name:
            return parse_relationship(config)
    return None


def find_detail(schema: Dict[str, Any], name: str) -> Optional[DetailSpec]:
    details = list(schema.get("details") or [])
    if isinstance(schema.get("detail"), dict):
        details.append(schema["detail"])
    for config in details:
        if isinstance(config, dict) and config.get("model") == name:
            return parse_detail(config)
    return None


def _require_model(model: Any, role: str, name: str) -> None:
    if not isinstance(model, DynamicModel):
        raise RelationshipConfigurationError(
            f"Relationship '{name}' needs a configured DynamicModel as its {role} model, "
            f"got {type(model).__name__}"
        )


def _load(load_model: ModelLoader, model: str, name: str) -> DynamicModel:
    try:
        return load_model(model)
    except SchemaNotFound as e:
        raise RelationshipConfigurationError(
            f"Relationship '{name}' refers to model '{model}' which has no schema"
        ) from e
