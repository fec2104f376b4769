"""Declarative pivot mutations run on create/update/delete."""
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlmodel.ext.asyncio.session import AsyncSession

from crud6.core.exceptions import BadRequest, RelationshipConfigurationError
from crud6.core.models.dynamic_model import DynamicModel
from crud6.core.schemas.fields import RELATIONSHIP_EVENTS, EventActions, parse_relationship
from crud6.core.services.relationship_resolver import ModelLoader, RelationshipResolver
from crud6.core.utils.utils import substitute_pivot_data

logger = logging.getLogger(__name__)

ACTION_KEYS = ("attach", "sync", "detach")


class RelationshipActionProcessor:
    """Run the attach/sync/detach actions a schema declares for an event."""

    def __init__(self, resolver: Optional[RelationshipResolver] = None):
        self.resolver = resolver or RelationshipResolver()

    async def process(
        self,
        session: AsyncSession,
        event: str,
        schema: Dict[str, Any],
        parent: DynamicModel,
        parent_id: Any,
        data: Optional[Dict[str, Any]],
        load_model: ModelLoader,
        current_user: Any = None,
    ) -> None:
        """
        Apply every relationship action declared for event.

        Runs on the caller's session; any failure is logged and re-raised so
        the caller's transaction is rolled back.
        """
        if event not in RELATIONSHIP_EVENTS:
            raise RelationshipConfigurationError(f"Unknown relationship event: {event}")

        data = data or {}
        for config in schema.get("relationships") or []:
            raw_actions = (config.get("actions") or {}).get(event) if isinstance(config, dict) else None
            if not raw_actions:
                continue

            name = config.get("name", "<unnamed>")
            try:
                await self._process_relationship(
                    session, event, config, raw_actions, parent, parent_id, data, load_model, current_user
                )
            except Exception:
                logger.error(
                    "Relationship action '%s' failed for %s %s on relationship '%s'",
                    event,
                    parent.config.model,
                    parent_id,
                    name,
                )
                raise

    async def _process_relationship(
        self,
        session: AsyncSession,
        event: str,
        config: Dict[str, Any],
        raw_actions: Any,
        parent: DynamicModel,
        parent_id: Any,
        data: Dict[str, Any],
        load_model: ModelLoader,
        current_user: Any,
    ) -> None:
        name = config.get("name", "<unnamed>")
        if not isinstance(raw_actions, dict):
            raise RelationshipConfigurationError(
                f"Actions for '{event}' on relationship '{name}' must be an object"
            )
        unknown = [key for key in raw_actions if key not in ACTION_KEYS]
        if unknown:
            raise RelationshipConfigurationError(
                f"Unknown action(s) {unknown} for '{event}' on relationship '{name}'"
            )
        try:
            actions = EventActions.model_validate(raw_actions)
        except ValidationError as e:
            raise RelationshipConfigurationError(
                f"Invalid '{event}' actions on relationship '{name}': {e}"
            ) from e

        spec = parse_relationship(config)
        related = load_model(spec.related_model)
        through = load_model(spec.through) if getattr(spec, "through", None) else None
        relation = self.resolver.resolve(parent, parent_id, spec, related, through)

        # Declaration order of the action keys is the execution order
        for key in raw_actions:
            if key == "attach":
                for item in actions.attach:
                    pivot_data = substitute_pivot_data(item.pivot_data, current_user)
                    await relation.attach(session, [item.related_id], pivot_data)
            elif key == "sync":
                await self._sync(session, relation, actions.sync, name, data)
            elif key == "detach":
                if actions.detach == "all":
                    await relation.detach(session)
                elif actions.detach:
                    await relation.detach(session, actions.detach)

        logger.debug(
            "Processed %s actions %s on relationship '%s' for %s %s",
            event,
            list(raw_actions),
            name,
            parent.config.model,
            parent_id,
        )

    @staticmethod
    async def _sync(session, relation, sync, name: str, data: Dict[str, Any]) -> None:
        if sync is None or sync is False:
            return
        field = f"{name}_ids" if sync is True else sync
        if field not in data:
            logger.debug("Sync field '%s' not in input; leaving '%s' unchanged", field, name)
            return

        ids = data[field]
        if ids is None:
            ids = []
        if not isinstance(ids, list):
            raise BadRequest(f"Field '{field}' must be a list of ids")
        await relation.sync(session, ids)
