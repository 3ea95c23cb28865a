from typing import List, Optional, Tuple
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.core.exceptions import NotFoundError, ValidationError
from taskgrid.logs.debug_log import debug_logger, log_function
from taskgrid.models.audit import AuditAction
from taskgrid.models.board import Board
from taskgrid.schemas.property import (
    OPTION_TYPES,
    Property,
    PropertyCreate,
    PropertyOption,
    PropertyOptionCreate,
    PropertyOptionUpdate,
    PropertyUpdate,
)
from taskgrid.schemas.view import View
from taskgrid.services.audit_service import AuditService
from taskgrid.services.board_service import BoardService
from taskgrid.services.schema_index import SchemaIndex
from taskgrid.services.view_service import ViewService


# ---------------------------------------------------------------------------
# Pure list operations. Each returns a new list and leaves its input intact,
# so a failing validation never leaves a half-applied schema behind.
# ---------------------------------------------------------------------------

def _renumber(properties: List[Property]) -> List[Property]:
    return [prop.model_copy(update={"order": index}) for index, prop in enumerate(properties)]


def _move(items: list, old_index: int, new_index: int) -> list:
    if not 0 <= old_index < len(items) or not 0 <= new_index < len(items):
        raise ValidationError(
            f"Reorder indices out of range: {old_index} -> {new_index} (size {len(items)})"
        )
    items = list(items)
    items.insert(new_index, items.pop(old_index))
    return items


def _position(properties: List[Property], property_id: str) -> int:
    for index, prop in enumerate(properties):
        if prop.id == property_id:
            return index
    raise NotFoundError(f"Property {property_id} not found")


def _option_property(properties: List[Property], property_id: str) -> Tuple[int, Property]:
    index = _position(properties, property_id)
    prop = properties[index]
    if prop.type not in OPTION_TYPES:
        raise ValidationError(f"Property '{prop.name}' of type {prop.type.value} has no options")
    return index, prop


def _replace(properties: List[Property], index: int, prop: Property) -> List[Property]:
    result = list(properties)
    result[index] = prop
    return result


def add_property(
    properties: List[Property], data: PropertyCreate
) -> Tuple[List[Property], Property]:
    """Append the property, or insert it at ``data.insert_index``"""
    prop = Property(
        name=data.name,
        type=data.type,
        width=data.width,
        required=data.required,
        options=[PropertyOption(label=o.label, color=o.color) for o in data.options or []],
    )
    ordered = SchemaIndex(properties).properties
    index = len(ordered) if data.insert_index is None else min(data.insert_index, len(ordered))
    ordered.insert(index, prop)
    result = _renumber(ordered)
    return result, result[index]


def update_property(
    properties: List[Property], property_id: str, data: PropertyUpdate
) -> List[Property]:
    """Rename, resize or toggle required; ids and task values are untouched"""
    index = _position(properties, property_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    return _replace(properties, index, properties[index].model_copy(update=changes))


def remove_property(properties: List[Property], property_id: str) -> List[Property]:
    index = _position(properties, property_id)
    ordered = [prop for prop in SchemaIndex(properties).properties if prop.id != properties[index].id]
    return _renumber(ordered)


def reorder_properties(properties: List[Property], old_index: int, new_index: int) -> List[Property]:
    """Move the property at display position old_index to new_index"""
    return _renumber(_move(SchemaIndex(properties).properties, old_index, new_index))


def add_option(
    properties: List[Property], property_id: str, data: PropertyOptionCreate
) -> Tuple[List[Property], PropertyOption]:
    index, prop = _option_property(properties, property_id)
    option = PropertyOption(label=data.label, color=data.color)
    taken = set(prop.option_ids())
    while option.id in taken:
        option = PropertyOption(label=data.label, color=data.color)
    updated = prop.model_copy(update={"options": list(prop.options) + [option]})
    return _replace(properties, index, updated), option


def update_option(
    properties: List[Property], property_id: str, option_id: str, data: PropertyOptionUpdate
) -> List[Property]:
    index, prop = _option_property(properties, property_id)
    changes = data.model_dump(exclude_unset=True)
    if changes.get("label") is None:
        changes.pop("label", None)
    options = []
    found = False
    for option in prop.options:
        if option.id == option_id:
            option = option.model_copy(update=changes)
            found = True
        options.append(option)
    if not found:
        raise NotFoundError(f"Option {option_id} not found on property '{prop.name}'")
    return _replace(properties, index, prop.model_copy(update={"options": options}))


def remove_option(properties: List[Property], property_id: str, option_id: str) -> List[Property]:
    """Drop the option from the property; tasks keep the stale id"""
    index, prop = _option_property(properties, property_id)
    if option_id not in prop.option_ids():
        raise NotFoundError(f"Option {option_id} not found on property '{prop.name}'")
    options = [option for option in prop.options if option.id != option_id]
    return _replace(properties, index, prop.model_copy(update={"options": options}))


def reorder_options(
    properties: List[Property], property_id: str, old_index: int, new_index: int
) -> List[Property]:
    index, prop = _option_property(properties, property_id)
    options = _move(prop.options, old_index, new_index)
    return _replace(properties, index, prop.model_copy(update={"options": options}))


def prune_views(views: List[View], property_id: str) -> List[View]:
    """Remove every reference to a deleted property from the saved views"""
    result = []
    for view in views:
        config = view.config
        changes = {}
        if config.group_by == property_id:
            changes["group_by"] = None
        if config.visible_properties is not None and property_id in config.visible_properties:
            changes["visible_properties"] = [
                pid for pid in config.visible_properties if pid != property_id
            ]
        if config.aggregations is not None:
            kept = [agg for agg in config.aggregations if agg.property_id != property_id]
            if len(kept) != len(config.aggregations):
                changes["aggregations"] = kept
        if changes:
            view = view.model_copy(update={"config": config.model_copy(update=changes)})
        result.append(view)
    return result


def dump_properties(properties: List[Property]) -> list:
    return [prop.model_dump(mode="json", exclude_none=True) for prop in properties]


# ---------------------------------------------------------------------------
# Store operations
# ---------------------------------------------------------------------------

class PropertyService:
    """Schema store: persists a board's property list"""

    @staticmethod
    def load(board: Board) -> List[Property]:
        return SchemaIndex.from_board(board).properties

    @staticmethod
    async def _save(
        db: AsyncSession,
        board: Board,
        properties: List[Property],
        actor_id: Optional[int],
        action: AuditAction,
        details: dict,
        views: Optional[List[View]] = None,
    ) -> List[Property]:
        board.properties = dump_properties(properties)
        if views is not None:
            board.views = [view.to_json() for view in views]
        board.updated_at = datetime.utcnow().replace(tzinfo=None)
        await AuditService.record_audit(db, action, "board", board.id, actor_id, details)
        await db.commit()
        await db.refresh(board)
        debug_logger.debug(f"Board {board.id}: {action.value} {details}")
        return PropertyService.load(board)

    @staticmethod
    async def list_properties(db: AsyncSession, board_id: int) -> List[Property]:
        board = await BoardService.require(db, board_id)
        return PropertyService.load(board)

    @staticmethod
    @log_function()
    async def add(
        db: AsyncSession, board_id: int, data: PropertyCreate, actor_id: Optional[int] = None
    ) -> Property:
        board = await BoardService.require(db, board_id)
        properties, prop = add_property(PropertyService.load(board), data)
        await PropertyService._save(
            db, board, properties, actor_id, AuditAction.PROPERTY_ADDED,
            {"property_id": prop.id, "name": prop.name, "type": prop.type.value},
        )
        return prop

    @staticmethod
    async def update(
        db: AsyncSession,
        board_id: int,
        property_id: str,
        data: PropertyUpdate,
        actor_id: Optional[int] = None,
    ) -> Property:
        board = await BoardService.require(db, board_id)
        properties = update_property(PropertyService.load(board), property_id, data)
        saved = await PropertyService._save(
            db, board, properties, actor_id, AuditAction.PROPERTY_UPDATED,
            {"property_id": property_id, **data.model_dump(exclude_unset=True)},
        )
        return SchemaIndex(saved).require(property_id)

    @staticmethod
    @log_function()
    async def remove(
        db: AsyncSession, board_id: int, property_id: str, actor_id: Optional[int] = None
    ) -> List[Property]:
        """Remove a property; task values stay, view references are cleared"""
        board = await BoardService.require(db, board_id)
        properties = remove_property(PropertyService.load(board), property_id)
        views = prune_views(ViewService.load(board), property_id)
        return await PropertyService._save(
            db, board, properties, actor_id, AuditAction.PROPERTY_REMOVED,
            {"property_id": property_id}, views=views,
        )

    @staticmethod
    async def reorder(
        db: AsyncSession, board_id: int, old_index: int, new_index: int, actor_id: Optional[int] = None
    ) -> List[Property]:
        board = await BoardService.require(db, board_id)
        properties = reorder_properties(PropertyService.load(board), old_index, new_index)
        return await PropertyService._save(
            db, board, properties, actor_id, AuditAction.PROPERTY_UPDATED,
            {"reorder": [old_index, new_index]},
        )

    @staticmethod
    async def add_option(
        db: AsyncSession,
        board_id: int,
        property_id: str,
        data: PropertyOptionCreate,
        actor_id: Optional[int] = None,
    ) -> PropertyOption:
        board = await BoardService.require(db, board_id)
        properties, option = add_option(PropertyService.load(board), property_id, data)
        await PropertyService._save(
            db, board, properties, actor_id, AuditAction.PROPERTY_UPDATED,
            {"property_id": property_id, "option_added": option.id},
        )
        return option

    @staticmethod
    async def update_option(
        db: AsyncSession,
        board_id: int,
        property_id: str,
        option_id: str,
        data: PropertyOptionUpdate,
        actor_id: Optional[int] = None,
    ) -> Property:
        board = await BoardService.require(db, board_id)
        properties = update_option(PropertyService.load(board), property_id, option_id, data)
        saved = await PropertyService._save(
            db, board, properties, actor_id, AuditAction.PROPERTY_UPDATED,
            {"property_id": property_id, "option_updated": option_id},
        )
        return SchemaIndex(saved).require(property_id)

    @staticmethod
    async def remove_option(
        db: AsyncSession,
        board_id: int,
        property_id: str,
        option_id: str,
        actor_id: Optional[int] = None,
    ) -> Property:
        board = await BoardService.require(db, board_id)
        properties = remove_option(PropertyService.load(board), property_id, option_id)
        saved = await PropertyService._save(
            db, board, properties, actor_id, AuditAction.PROPERTY_UPDATED,
            {"property_id": property_id, "option_removed": option_id},
        )
        return SchemaIndex(saved).require(property_id)

    @staticmethod
    async def reorder_options(
        db: AsyncSession,
        board_id: int,
        property_id: str,
        old_index: int,
        new_index: int,
        actor_id: Optional[int] = None,
    ) -> Property:
        board = await BoardService.require(db, board_id)
        properties = reorder_options(PropertyService.load(board), property_id, old_index, new_index)
        saved = await PropertyService._save(
            db, board, properties, actor_id, AuditAction.PROPERTY_UPDATED,
            {"property_id": property_id, "options_reorder": [old_index, new_index]},
        )
        return SchemaIndex(saved).require(property_id)
