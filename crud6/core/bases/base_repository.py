import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import func
from sqlmodel import select as count_select
from sqlmodel.ext.asyncio.session import AsyncSession

from crud6.core.config import settings
from crud6.core.exceptions import ConflictError, RepositoryError
from crud6.core.models.dynamic_model import CREATED_AT, UPDATED_AT, DynamicModel

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100
DEFAULT_PER_PAGE = 10


class DynamicRepository:
    """Async data access for one DynamicModel, on the caller's session."""

    def __init__(self, model: DynamicModel, schema: Dict[str, Any]):
        self.model = model
        self.schema = schema

    @property
    def fields(self) -> Dict[str, Dict[str, Any]]:
        return self.schema.get("fields") or {}

    def _handle_db_error(self, error: SQLAlchemyError, operation: str) -> None:
        """Handle database errors and raise appropriate exceptions."""
        logger.error("Database error during %s on '%s': %s", operation, self.model.name, error)
        if isinstance(error, IntegrityError):
            raise ConflictError(
                f"Database integrity error during {operation}: {error.orig}"
            ) from error
        raise RepositoryError(f"Database error during {operation}: {error}") from error

    def _build_select_stmt(self, include_deleted: bool = False, **filters) -> Any:
        """Build select statement with optional filters and soft delete handling."""
        stmt = self.model.base_select(include_deleted=include_deleted)

        for field, value in filters.items():
            if self.model.has_column(field):
                stmt = stmt.where(self.model.column(field) == value)

        return stmt

    # ----------------- READ ----------------- #
    async def get(
        self, session: AsyncSession, item_id: Any, include_deleted: bool = False
    ) -> Optional[Dict[str, Any]]:
        """Get a single row by primary key, hidden columns included."""
        try:
            stmt = self._build_select_stmt(include_deleted=include_deleted)
            stmt = stmt.where(self.model.primary_key_column == item_id)

            result = await session.exec(stmt)
            row = result.mappings().first()
            return dict(row) if row is not None else None
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get")

    async def list(
        self,
        session: AsyncSession,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
        sorts: Optional[Dict[str, str]] = None,
        filters: Optional[Dict[str, Any]] = None,
        search: Optional[str] = None,
        include_deleted: bool = False,
    ) -> Dict[str, Any]:
        """Get one page of rows with sorting, filtering and search applied."""
        if page < 1:
            page = 1
        if per_page < 1 or per_page > MAX_PER_PAGE:
            per_page = DEFAULT_PER_PAGE

        try:
            # Build base query
            stmt = self._build_select_stmt(include_deleted=include_deleted)
            stmt = self._apply_filters(stmt, filters or {})
            stmt = self._apply_search(stmt, search)

            # Get total count
            count_stmt = count_select(func.count()).select_from(stmt.subquery())
            total_result = await session.exec(count_stmt)
            total = total_result.one()

            # Get paginated items
            stmt = self._apply_sorts(stmt, sorts or {})
            offset = (page - 1) * per_page
            result = await session.exec(stmt.offset(offset).limit(per_page))
            items = [self.model.cast_row(row) for row in result.mappings().all()]

            # Calculate pages
            pages = (total + per_page - 1) // per_page  # Ceiling division

            return {
                "items": items,
                "total": total,
                "page": page,
                "per_page": per_page,
                "pages": pages,
            }
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list")

    async def exists_value(
        self,
        session: AsyncSession,
        field: str,
        value: Any,
        exclude_id: Any = None,
    ) -> bool:
        """Check whether another row already holds value in field."""
        try:
            stmt = select(self.model.primary_key_column).where(self.model.column(field) == value)
            stmt = self.model.apply_soft_delete_scope(stmt)
            if exclude_id is not None:
                stmt = stmt.where(self.model.primary_key_column != exclude_id)

            result = await session.exec(stmt.limit(1))
            return result.first() is not None
        except SQLAlchemyError as e:
            self._handle_db_error(e, "exists_value")

    # ----------------- WRITE ----------------- #
    async def create(self, session: AsyncSession, values: Dict[str, Any]) -> Any:
        """Insert a row and return its primary key."""
        values = dict(values)
        if self.model.config.timestamps:
            now = settings.get_now()
            values.setdefault(CREATED_AT, now)
            values.setdefault(UPDATED_AT, now)

        try:
            result = await session.exec(insert(self.model.table).values(**values))
            primary_key = self.model.config.primary_key
            if values.get(primary_key) is not None:
                return values[primary_key]
            return result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            self._handle_db_error(e, "create")

    async def update(self, session: AsyncSession, item_id: Any, values: Dict[str, Any]) -> int:
        """Update a row by primary key; returns the number of rows changed."""
        values = dict(values)
        # Never rewrite the primary key
        values.pop(self.model.config.primary_key, None)
        if not values:
            return 0
        if self.model.config.timestamps:
            values[UPDATED_AT] = settings.get_now()

        try:
            stmt = (
                update(self.model.table)
                .where(self.model.primary_key_column == item_id)
                .values(**values)
            )
            result = await session.exec(stmt)
            return result.rowcount
        except SQLAlchemyError as e:
            self._handle_db_error(e, "update")

    async def delete(self, session: AsyncSession, item_id: Any, hard: bool = False) -> int:
        """Delete a row; soft-deletes when the model supports it, unless hard."""
        return await self.delete_where(session, self.model.config.primary_key, item_id, hard=hard)

    async def delete_where(
        self, session: AsyncSession, field: str, value: Any, hard: bool = False
    ) -> int:
        column = self.model.column(field)
        deleted_at = self.model.config.deleted_at_column
        try:
            if deleted_at and not hard:
                stmt = (
                    update(self.model.table)
                    .where(column == value)
                    .where(self.model.column(deleted_at).is_(None))
                    .values(**{deleted_at: settings.get_now()})
                )
            else:
                stmt = delete(self.model.table).where(column == value)

            result = await session.exec(stmt)
            return result.rowcount
        except SQLAlchemyError as e:
            self._handle_db_error(e, "delete")

    # ----------------- QUERY HELPERS ----------------- #
    def _apply_filters(self, stmt, filters: Dict[str, Any]):
        for name, value in filters.items():
            spec = self.fields.get(name)
            if spec is None or not spec.get("filterable") or not self.model.has_column(name):
                logger.debug("Ignoring filter on non-filterable field '%s'", name)
                continue
            if value is None or value == "":
                continue

            column = self.model.column(name)
            if self.model.config.casts.get(name) == "string":
                stmt = stmt.where(column.ilike(f"%{value}%"))
            else:
                try:
                    stmt = stmt.where(column == self.model.cast_value(name, value))
                except (TypeError, ValueError):
                    logger.debug("Ignoring uncastable filter value %r for '%s'", value, name)
        return stmt

    def _apply_search(self, stmt, search: Optional[str]):
        if not search:
            return stmt

        columns = [
            self.model.column(name)
            for name, spec in self.fields.items()
            if spec.get("searchable") and self.model.has_column(name)
        ]
        if not columns:
            logger.debug("No searchable fields on '%s'; ignoring search", self.model.config.model)
            return stmt
        return stmt.where(or_(*[column.ilike(f"%{search}%") for column in columns]))

    def _apply_sorts(self, stmt, sorts: Dict[str, str]):
        orderings: List[Any] = []
        requested = sorts or self._default_sorts()
        for name, direction in requested.items():
            spec = self.fields.get(name, {})
            sortable = spec.get("sortable") or name == self.model.config.primary_key
            if not sortable or not self.model.has_column(name):
                logger.debug("Ignoring sort on non-sortable field '%s'", name)
                continue
            column = self.model.column(name)
            orderings.append(column.desc() if str(direction).lower() == "desc" else column.asc())

        if not orderings:
            orderings.append(self.model.primary_key_column.asc())
        return stmt.order_by(*orderings)

    def _default_sorts(self) -> Dict[str, str]:
        default_sort = self.schema.get("default_sort")
        if isinstance(default_sort, dict):
            return {name: str(direction) for name, direction in default_sort.items()}
        return {}
