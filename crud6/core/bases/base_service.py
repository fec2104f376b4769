import logging
from typing import Any, Dict, List, Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from crud6.core.auth import CapabilityChecker, Identity
from crud6.core.bases.base_repository import DynamicRepository
from crud6.core.database import DatabaseManager
from crud6.core.exceptions import (
    AuthorizationDenied,
    BadRequest,
    RecordNotFound,
    RelationshipConfigurationError,
    SchemaNotFound,
)
from crud6.core.models.dynamic_model import DynamicModel
from crud6.core.schemas.fields import FieldType, parse_detail
from crud6.core.services.password_service import PasswordHasher
from crud6.core.services.relationship_actions import RelationshipActionProcessor
from crud6.core.services.relationship_resolver import ManyToManyRelation, RelationshipResolver
from crud6.core.services.schema_service import SchemaService
from crud6.core.services.validation_service import ValidationService
from crud6.core.utils.utils import parse_model_name

logger = logging.getLogger(__name__)


class ModelContext:
    """Everything resolved for one ``model[@connection]`` in one request."""

    def __init__(self, service: "CrudService", name: str):
        self.model_name, self.connection = parse_model_name(name)
        # Unknown connections fail before they can seed schema cache entries
        service.databases.get(self.connection)
        self.schema = service.schema_service.get_schema(self.model_name, self.connection)
        self.model = service.schema_service.get_model(self.model_name, self.connection)
        self.repository = DynamicRepository(self.model, self.schema)
        self._service = service

    @property
    def primary_key(self) -> str:
        return self.model.config.primary_key

    def load_model(self, model: str) -> DynamicModel:
        """Configure a related model on this context's connection."""
        return self._service.schema_service.get_model(model, self.connection)

    def session(self):
        return self._service.databases.get_session(self.model.config.connection)


class CrudService:
    """Authorize, validate and run CRUD operations for schema-described models."""

    def __init__(
        self,
        schema_service: SchemaService,
        databases: DatabaseManager,
        validator: Optional[ValidationService] = None,
        hasher: Optional[PasswordHasher] = None,
        resolver: Optional[RelationshipResolver] = None,
        actions: Optional[RelationshipActionProcessor] = None,
    ):
        self.schema_service = schema_service
        self.databases = databases
        self.validator = validator or ValidationService()
        self.hasher = hasher or PasswordHasher()
        self.resolver = resolver or RelationshipResolver()
        self.actions = actions or RelationshipActionProcessor(self.resolver)

    def context(self, name: str) -> ModelContext:
        return ModelContext(self, name)

    def authorize(
        self,
        schema: Dict[str, Any],
        action: str,
        identity: Identity,
        checker: CapabilityChecker,
        capability: Optional[str] = None,
    ) -> None:
        """Raise AuthorizationDenied unless identity holds the capability for action."""
        capability = capability or (schema.get("permissions") or {}).get(action) or f"{action}.{schema['model']}"
        if not checker.check(identity, capability):
            logger.info(
                "Denied '%s' on '%s' for user %s (needs %s)",
                action,
                schema.get("model"),
                identity.id,
                capability,
            )
            raise AuthorizationDenied(f"Access denied: '{capability}' is required")

    # ----------------- SCHEMA ----------------- #
    def get_schema(
        self,
        name: str,
        identity: Identity,
        checker: CapabilityChecker,
        context: Optional[str] = None,
        include_related: bool = False,
    ) -> Dict[str, Any]:
        model_name, connection = parse_model_name(name)
        self.databases.get(connection)
        schema = self.schema_service.get_schema(model_name, connection)
        self.authorize(schema, "read", identity, checker)

        filtered = self.schema_service.get_filtered_schema(model_name, context, connection)
        if include_related:
            filtered["related_schemas"] = self.schema_service.get_related_schemas(
                schema, context, connection
            )
        return filtered

    # ----------------- READ ----------------- #
    async def get_list(
        self,
        name: str,
        identity: Identity,
        checker: CapabilityChecker,
        page: int = 1,
        per_page: int = 10,
        sorts: Optional[Dict[str, str]] = None,
        filters: Optional[Dict[str, Any]] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        ctx = self.context(name)
        self.authorize(ctx.schema, "read", identity, checker)

        async with ctx.session() as session:
            return await ctx.repository.list(
                session,
                page=page,
                per_page=per_page,
                sorts=sorts,
                filters=filters,
                search=search,
            )

    async def get_by_id(
        self, name: str, item_id: Any, identity: Identity, checker: CapabilityChecker
    ) -> Dict[str, Any]:
        ctx = self.context(name)
        self.authorize(ctx.schema, "read", identity, checker)
        item_id = self._cast_id(ctx, item_id)

        async with ctx.session() as session:
            row = await self._get_or_404(ctx, session, item_id)
        return ctx.model.cast_row(row)

    async def get_related(
        self,
        name: str,
        item_id: Any,
        relation: str,
        identity: Identity,
        checker: CapabilityChecker,
    ) -> List[Dict[str, Any]]:
        ctx = self.context(name)
        self.authorize(ctx.schema, "read", identity, checker)
        item_id = self._cast_id(ctx, item_id)

        async with ctx.session() as session:
            await self._get_or_404(ctx, session, item_id)
            resolved = self.resolver.resolve_by_name(
                ctx.schema, relation, ctx.model, item_id, ctx.load_model
            )
            return await resolved.get_results(session)

    # ----------------- WRITE ----------------- #
    async def create(
        self,
        name: str,
        data: Dict[str, Any],
        identity: Identity,
        checker: CapabilityChecker,
    ) -> Dict[str, Any]:
        ctx = self.context(name)
        self.authorize(ctx.schema, "create", identity, checker)

        async with ctx.session() as session:
            async with session.begin():
                values = await self.validator.validate(
                    ctx.schema,
                    data,
                    context="create",
                    unique_check=self._unique_check(ctx, session),
                )
                values = self._apply_defaults(ctx, values)
                values = ctx.model.fill(self._hash_passwords(ctx, values))

                item_id = await ctx.repository.create(session, values)
                await self.actions.process(
                    session,
                    "on_create",
                    ctx.schema,
                    ctx.model,
                    item_id,
                    data,
                    ctx.load_model,
                    current_user=identity.id,
                )
                row = await self._get_or_404(ctx, session, item_id)

        logger.info("Created %s %s", ctx.model_name, item_id)
        return ctx.model.cast_row(row)

    async def update(
        self,
        name: str,
        item_id: Any,
        data: Dict[str, Any],
        identity: Identity,
        checker: CapabilityChecker,
    ) -> Dict[str, Any]:
        ctx = self.context(name)
        self.authorize(ctx.schema, "update", identity, checker)
        item_id = self._cast_id(ctx, item_id)

        # An empty password on edit means "keep the current one"
        data = {
            key: value for key, value in data.items() if not (self._is_password(ctx, key) and not value)
        }

        async with ctx.session() as session:
            async with session.begin():
                await self._get_or_404(ctx, session, item_id)
                values = await self.validator.validate(
                    ctx.schema,
                    data,
                    context="edit",
                    unique_check=self._unique_check(ctx, session, exclude_id=item_id),
                )
                values = ctx.model.fill(self._hash_passwords(ctx, values))

                await ctx.repository.update(session, item_id, values)
                await self.actions.process(
                    session,
                    "on_update",
                    ctx.schema,
                    ctx.model,
                    item_id,
                    data,
                    ctx.load_model,
                    current_user=identity.id,
                )
                row = await self._get_or_404(ctx, session, item_id)

        logger.info("Updated %s %s", ctx.model_name, item_id)
        return ctx.model.cast_row(row)

    async def update_field(
        self,
        name: str,
        item_id: Any,
        field: str,
        value: Any,
        identity: Identity,
        checker: CapabilityChecker,
    ) -> Dict[str, Any]:
        """Update one field, as used by toggles and password resets."""
        ctx = self.context(name)
        self.authorize(ctx.schema, "update", identity, checker)
        item_id = self._cast_id(ctx, item_id)
        spec = (ctx.schema.get("fields") or {}).get(field)
        if spec is None:
            raise BadRequest(f"Field '{field}' does not exist in schema for model '{ctx.model_name}'")
        if spec.get("readonly") or spec.get("auto_increment") or spec.get("computed"):
            raise BadRequest(f"Field '{field}' is readonly and cannot be updated")

        async with ctx.session() as session:
            async with session.begin():
                await self._get_or_404(ctx, session, item_id)
                value = await self.validator.validate_field(
                    ctx.schema,
                    field,
                    value,
                    unique_check=self._unique_check(ctx, session, exclude_id=item_id),
                )
                values = self._hash_passwords(ctx, {field: value})
                await ctx.repository.update(
                    session, item_id, {field: ctx.model.cast_value(field, values[field])}
                )
                row = await self._get_or_404(ctx, session, item_id)

        logger.info("Updated field '%s' of %s %s", field, ctx.model_name, item_id)
        return ctx.model.cast_row(row)

    async def delete(
        self,
        name: str,
        item_id: Any,
        identity: Identity,
        checker: CapabilityChecker,
    ) -> Dict[str, Any]:
        ctx = self.context(name)
        self.authorize(ctx.schema, "delete", identity, checker)
        item_id = self._cast_id(ctx, item_id)

        async with ctx.session() as session:
            async with session.begin():
                row = await self._get_or_404(ctx, session, item_id)
                await self.actions.process(
                    session,
                    "on_delete",
                    ctx.schema,
                    ctx.model,
                    item_id,
                    {},
                    ctx.load_model,
                    current_user=identity.id,
                )
                await self._cascade_delete(ctx, session, item_id)
                await ctx.repository.delete(session, item_id)

        logger.info("Deleted %s %s", ctx.model_name, item_id)
        return ctx.model.cast_row(row)

    # ----------------- ACTIONS ----------------- #
    async def run_action(
        self,
        name: str,
        item_id: Any,
        action_key: str,
        payload: Dict[str, Any],
        identity: Identity,
        checker: CapabilityChecker,
    ) -> Dict[str, Any]:
        """Run a custom action declared in the schema's ``actions`` list."""
        ctx = self.context(name)
        action = next(
            (
                config
                for config in ctx.schema.get("actions") or []
                if isinstance(config, dict) and config.get("key") == action_key
            ),
            None,
        )
        if action is None:
            raise RecordNotFound(f"Action '{action_key}' not found for model '{ctx.model_name}'")
        self.authorize(ctx.schema, "update", identity, checker, capability=action.get("permission"))
        item_id = self._cast_id(ctx, item_id)

        if action_key == "reset_password":
            return await self._reset_password(ctx, item_id, action, payload)
        if action.get("type") == "field_update":
            return await self._field_update_action(ctx, item_id, action, payload)

        logger.warning(
            "Action type '%s' (%s) has no server-side handler", action.get("type"), action_key
        )
        return {}

    async def _field_update_action(
        self, ctx: ModelContext, item_id: Any, action: Dict[str, Any], payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        field = action.get("field")
        spec = (ctx.schema.get("fields") or {}).get(field)
        if spec is None:
            raise RelationshipConfigurationError(
                f"Action '{action.get('key')}' updates unknown field '{field}'"
            )

        async with ctx.session() as session:
            async with session.begin():
                row = await self._get_or_404(ctx, session, item_id)
                if "value" in payload:
                    value = payload["value"]
                elif "value" in action:
                    value = action["value"]
                elif action.get("toggle") or spec.get("type") == FieldType.BOOLEAN.value:
                    value = not bool(row.get(field))
                else:
                    raise BadRequest(f"Action '{action.get('key')}' needs a value")

                await ctx.repository.update(session, item_id, {field: ctx.model.cast_value(field, value)})
                row = await self._get_or_404(ctx, session, item_id)

        logger.info("Action '%s' set %s on %s %s", action.get("key"), field, ctx.model_name, item_id)
        return ctx.model.cast_row(row)

    async def _reset_password(
        self, ctx: ModelContext, item_id: Any, action: Dict[str, Any], payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        field = action.get("field") or "password"
        async with ctx.session() as session:
            async with session.begin():
                await self._get_or_404(ctx, session, item_id)
                password = payload.get("password")
                if not password:
                    logger.info("Password reset requested for %s %s", ctx.model_name, item_id)
                    return {"reset_initiated": True, "message": "Password reset process initiated"}

                password = await self.validator.validate_field(ctx.schema, field, password)
                await ctx.repository.update(session, item_id, {field: self.hasher.hash(password)})

        logger.info("Password reset for %s %s", ctx.model_name, item_id)
        return {"reset_initiated": True, "password_updated": True}

    # ----------------- RELATIONSHIPS ----------------- #
    async def attach(
        self,
        name: str,
        item_id: Any,
        relation: str,
        ids: List[Any],
        identity: Identity,
        checker: CapabilityChecker,
    ) -> Dict[str, Any]:
        return await self._mutate_relation(name, item_id, relation, ids, identity, checker, attach=True)

    async def detach(
        self,
        name: str,
        item_id: Any,
        relation: str,
        ids: List[Any],
        identity: Identity,
        checker: CapabilityChecker,
    ) -> Dict[str, Any]:
        return await self._mutate_relation(name, item_id, relation, ids, identity, checker, attach=False)

    async def _mutate_relation(
        self,
        name: str,
        item_id: Any,
        relation: str,
        ids: List[Any],
        identity: Identity,
        checker: CapabilityChecker,
        attach: bool,
    ) -> Dict[str, Any]:
        ctx = self.context(name)
        self.authorize(ctx.schema, "update", identity, checker)
        item_id = self._cast_id(ctx, item_id)
        if not isinstance(ids, list) or not ids:
            raise BadRequest("Provide a non-empty list of ids")

        async with ctx.session() as session:
            async with session.begin():
                await self._get_or_404(ctx, session, item_id)
                resolved = self.resolver.resolve_by_name(
                    ctx.schema, relation, ctx.model, item_id, ctx.load_model
                )
                if not isinstance(resolved, ManyToManyRelation):
                    raise BadRequest(f"Relationship '{relation}' does not support attach or detach")
                if attach:
                    changed = await resolved.attach(session, ids)
                    result = {"attached": changed}
                else:
                    count = await resolved.detach(session, ids)
                    result = {"detached": count}

        logger.info(
            "%s %s on %s %s relationship '%s'",
            "Attached" if attach else "Detached",
            ids,
            ctx.model_name,
            item_id,
            relation,
        )
        return result

    # ----------------- HELPERS ----------------- #
    async def _get_or_404(self, ctx: ModelContext, session: AsyncSession, item_id: Any) -> Dict[str, Any]:
        row = await ctx.repository.get(session, item_id)
        if row is None:
            raise RecordNotFound(f"{ctx.model_name} with {ctx.primary_key} {item_id} not found")
        return row

    @staticmethod
    def _cast_id(ctx: ModelContext, item_id: Any) -> Any:
        try:
            return ctx.model.cast_value(ctx.primary_key, item_id)
        except (TypeError, ValueError):
            raise RecordNotFound(f"{ctx.model_name} with {ctx.primary_key} {item_id} not found")

    def _unique_check(self, ctx: ModelContext, session: AsyncSession, exclude_id: Any = None):
        async def check(field: str, value: Any) -> bool:
            if not ctx.model.has_column(field):
                return False
            return await ctx.repository.exists_value(session, field, value, exclude_id=exclude_id)

        return check

    @staticmethod
    def _is_password(ctx: ModelContext, field: str) -> bool:
        spec = (ctx.schema.get("fields") or {}).get(field) or {}
        return spec.get("type") == FieldType.PASSWORD.value

    def _hash_passwords(self, ctx: ModelContext, values: Dict[str, Any]) -> Dict[str, Any]:
        hashed = dict(values)
        for key, value in values.items():
            if self._is_password(ctx, key) and value and not self.hasher.is_hashed(value):
                hashed[key] = self.hasher.hash(value)
        return hashed

    @staticmethod
    def _apply_defaults(ctx: ModelContext, values: Dict[str, Any]) -> Dict[str, Any]:
        """Fill schema defaults for fields the request left out."""
        values = dict(values)
        for name, spec in (ctx.schema.get("fields") or {}).items():
            if values.get(name) is None and spec.get("default") is not None:
                values[name] = spec["default"]
        return values

    async def _cascade_delete(self, ctx: ModelContext, session: AsyncSession, parent_id: Any) -> None:
        """Delete child detail rows that reference the parent by foreign key."""
        soft = bool(ctx.model.config.soft_delete)
        for config in ctx.schema.get("details") or []:
            detail = parse_detail(config)
            if not detail.foreign_key or not detail.cascade_delete:
                continue

            try:
                child_schema = self.schema_service.get_schema(detail.model, ctx.connection)
            except SchemaNotFound:
                logger.warning(
                    "Skipping cascade delete of '%s': child model has no schema", detail.model
                )
                continue

            child = ctx.load_model(detail.model)
            hard = not (soft and child.config.soft_delete and detail.cascade_delete_mode != "hard")
            try:
                count = await DynamicRepository(child, child_schema).delete_where(
                    session, detail.foreign_key, parent_id, hard=hard
                )
            except Exception:
                logger.error(
                    "Cascade delete of '%s' failed for %s %s", detail.model, ctx.model_name, parent_id
                )
                raise
            logger.debug(
                "Cascade %s-deleted %d '%s' row(s) for %s %s",
                "hard" if hard else "soft",
                count,
                detail.model,
                ctx.model_name,
                parent_id,
            )
