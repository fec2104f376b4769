import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, Query, Request, status

from crud6.core.auth import CapabilityChecker, Identity, get_capability_checker, get_identity
from crud6.core.bases.base_service import CrudService
from crud6.core.exceptions import BadRequest
from crud6.core.response.handlers import paginated_response, success_response

logger = logging.getLogger(__name__)

_BRACKET_PARAM = re.compile(r"^(sorts|filters)\[([^\]]+)\]$")


def get_crud_service(request: Request) -> CrudService:
    """Get the CRUD service created at application start."""
    return request.app.state.crud_service


def parse_list_params(request: Request) -> Tuple[Dict[str, str], Dict[str, Any]]:
    """Collect ``sorts[field]`` and ``filters[field]`` query parameters."""
    sorts: Dict[str, str] = {}
    filters: Dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        match = _BRACKET_PARAM.match(key)
        if not match:
            continue
        kind, field = match.groups()
        if kind == "sorts":
            sorts[field] = value
        else:
            filters[field] = value
    return sorts, filters


class CrudRouter:
    """Router exposing CRUD endpoints for every schema-described model."""

    def __init__(
        self,
        namespace: str = "crud6",
        prefix: str = "/api",
        tags: Optional[List[str]] = None,
        dependencies: Optional[List[Callable]] = None,
    ):
        self.namespace = namespace
        self.prefix = f"{prefix.rstrip('/')}/{namespace}"
        self.tags = tags or [namespace.upper()]

        # Create router
        self.router = APIRouter(
            prefix=self.prefix,
            tags=self.tags,  # type:ignore
            dependencies=dependencies or [],  # type:ignore
        )

        # Register routes
        self._register_routes()

    def _register_routes(self) -> None:
        """Register all CRUD routes; static segments before path parameters."""
        self._register_schema()
        self._register_list()
        self._register_create()
        self._register_custom_action()
        self._register_get_by_id()
        self._register_update()
        self._register_delete()
        self._register_related()
        self._register_update_field()
        self._register_attach()
        self._register_detach()

    def get_router(self) -> APIRouter:
        """Get the FastAPI router instance."""
        return self.router

    def _register_schema(self) -> None:
        """Register GET /{model}/schema route."""
        @self.router.get(
            "/{model}/schema",
            summary="Get model schema",
            responses={
                200: {"description": "Schema retrieved successfully"},
                404: {"description": "Schema not found"},
            },
        )
        async def get_schema(
            model: str,
            context: Optional[str] = Query(None, description="Context name or comma list"),
            include_related: bool = Query(False),
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            schema = service.get_schema(
                model,
                identity,
                checker,
                context=context,
                include_related=include_related,
            )
            return success_response(data=schema, message=f"Schema for {model} retrieved successfully")

    def _register_list(self) -> None:
        """Register GET /{model} route with pagination."""
        @self.router.get(
            "/{model}",
            summary="List items",
            responses={
                200: {"description": "Items retrieved successfully"},
                403: {"description": "Access denied"},
            },
        )
        async def list_items(
            model: str,
            request: Request,
            page: int = Query(1, ge=1),
            per_page: Optional[int] = Query(None, ge=1, le=100),
            size: Optional[int] = Query(None, ge=1, le=100),
            search: Optional[str] = Query(None),
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            sorts, filters = parse_list_params(request)
            result = await service.get_list(
                model,
                identity,
                checker,
                page=page,
                per_page=per_page or size or 10,
                sorts=sorts,
                filters=filters,
                search=search,
            )
            return paginated_response(
                items=result["items"],
                total=result["total"],
                page=result["page"],
                per_page=result["per_page"],
                pages=result["pages"],
                message="Items retrieved successfully",
            )

    def _register_create(self) -> None:
        """Register POST /{model} route."""
        @self.router.post(
            "/{model}",
            status_code=status.HTTP_201_CREATED,
            summary="Create new item",
            responses={
                201: {"description": "Item created successfully"},
                422: {"description": "Validation error"},
            },
        )
        async def create_item(
            model: str,
            item_data: Dict[str, Any] = Body(...),
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            result = await service.create(model, item_data, identity, checker)
            return success_response(
                data=result,
                message="Item created successfully",
                status_code=status.HTTP_201_CREATED,
            )

    def _register_get_by_id(self) -> None:
        """Register GET /{model}/{item_id} route."""
        @self.router.get(
            "/{model}/{item_id}",
            summary="Get item by ID",
            responses={
                200: {"description": "Item retrieved successfully"},
                404: {"description": "Item not found"},
            },
        )
        async def get_by_id(
            model: str,
            item_id: str,
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            result = await service.get_by_id(model, item_id, identity, checker)
            return success_response(data=result, message="Item retrieved successfully")

    def _register_update(self) -> None:
        """Register PUT /{model}/{item_id} route."""
        @self.router.put(
            "/{model}/{item_id}",
            summary="Update item",
            responses={
                200: {"description": "Item updated successfully"},
                404: {"description": "Item not found"},
                422: {"description": "Validation error"},
            },
        )
        async def update_item(
            model: str,
            item_id: str,
            item_data: Dict[str, Any] = Body(...),
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            result = await service.update(model, item_id, item_data, identity, checker)
            return success_response(data=result, message="Item updated successfully")

    def _register_update_field(self) -> None:
        """Register PUT /{model}/{item_id}/{field} route."""
        @self.router.put(
            "/{model}/{item_id}/{field}",
            summary="Update a single field",
            responses={
                200: {"description": "Field updated successfully"},
                400: {"description": "Unknown or readonly field"},
            },
        )
        async def update_field(
            model: str,
            item_id: str,
            field: str,
            body: Dict[str, Any] = Body(...),
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            if field in body:
                value = body[field]
            elif "value" in body:
                value = body["value"]
            else:
                raise BadRequest(f"Request body must contain '{field}'")

            result = await service.update_field(model, item_id, field, value, identity, checker)
            return success_response(data=result, message=f"Field '{field}' updated successfully")

    def _register_delete(self) -> None:
        """Register DELETE /{model}/{item_id} route."""
        @self.router.delete(
            "/{model}/{item_id}",
            summary="Delete item",
            responses={
                200: {"description": "Item deleted successfully"},
                404: {"description": "Item not found"},
            },
        )
        async def delete_item(
            model: str,
            item_id: str,
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            result = await service.delete(model, item_id, identity, checker)
            return success_response(data=result, message="Item deleted successfully")

    def _register_custom_action(self) -> None:
        """Register POST /{model}/{item_id}/a/{action_key} route."""
        @self.router.post(
            "/{model}/{item_id}/a/{action_key}",
            summary="Run a custom action",
            responses={
                200: {"description": "Action executed successfully"},
                404: {"description": "Action or item not found"},
            },
        )
        async def run_action(
            model: str,
            item_id: str,
            action_key: str,
            payload: Optional[Dict[str, Any]] = Body(None),
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            result = await service.run_action(
                model, item_id, action_key, payload or {}, identity, checker
            )
            return success_response(data=result, message=f"Action '{action_key}' executed successfully")

    def _register_related(self) -> None:
        """Register GET /{model}/{item_id}/{relation} route."""
        @self.router.get(
            "/{model}/{item_id}/{relation}",
            summary="List related items",
            responses={
                200: {"description": "Related items retrieved successfully"},
                404: {"description": "Item or relationship not found"},
            },
        )
        async def get_related(
            model: str,
            item_id: str,
            relation: str,
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            rows = await service.get_related(model, item_id, relation, identity, checker)
            return paginated_response(
                items=rows,
                total=len(rows),
                page=1,
                per_page=max(len(rows), 1),
                pages=1,
                message=f"Related {relation} retrieved successfully",
            )

    def _register_attach(self) -> None:
        """Register POST /{model}/{item_id}/{relation} route."""
        @self.router.post(
            "/{model}/{item_id}/{relation}",
            summary="Attach related items",
        )
        async def attach_related(
            model: str,
            item_id: str,
            relation: str,
            body: Dict[str, Any] = Body(...),
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            result = await service.attach(model, item_id, relation, body.get("ids"), identity, checker)
            return success_response(data=result, message=f"Related {relation} attached successfully")

    def _register_detach(self) -> None:
        """Register DELETE /{model}/{item_id}/{relation} route."""
        @self.router.delete(
            "/{model}/{item_id}/{relation}",
            summary="Detach related items",
        )
        async def detach_related(
            model: str,
            item_id: str,
            relation: str,
            body: Dict[str, Any] = Body(...),
            service: CrudService = Depends(get_crud_service),
            identity: Identity = Depends(get_identity),
            checker: CapabilityChecker = Depends(get_capability_checker),
        ):
            result = await service.detach(model, item_id, relation, body.get("ids"), identity, checker)
            return success_response(data=result, message=f"Related {relation} detached successfully")
