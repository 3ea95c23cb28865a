from typing import Any, List, Optional, Union
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.models.audit import Activity, ActivityType, AuditAction, AuditLog
from taskgrid.logs.server_log import api_logger


def _value(item) -> str:
    return item.value if hasattr(item, "value") else str(item)


class AuditService:
    """Append-only audit/activity sink.

    Both writes run inside a savepoint of the caller's session and never
    raise: a failed write is logged and the caller's work goes on.
    """

    @staticmethod
    async def record_audit(
        db: AsyncSession,
        action: Union[AuditAction, str],
        entity_type: str,
        entity_id: Any,
        actor_id: Optional[int],
        details: Optional[dict] = None,
    ) -> None:
        try:
            async with db.begin_nested():
                db.add(AuditLog(
                    action=_value(action),
                    entity_type=entity_type,
                    entity_id=None if entity_id is None else str(entity_id),
                    actor_id=actor_id,
                    details=details,
                ))
        except SQLAlchemyError as e:
            api_logger.error(f"Failed to record audit {_value(action)} for {entity_type} {entity_id}: {e}")

    @staticmethod
    async def record_activity(
        db: AsyncSession,
        board_id: int,
        activity_type: Union[ActivityType, str],
        actor_id: Optional[int],
        description: str,
        metadata: Optional[dict] = None,
    ) -> None:
        try:
            async with db.begin_nested():
                db.add(Activity(
                    board_id=board_id,
                    activity_type=_value(activity_type),
                    actor_id=actor_id,
                    description=description,
                    meta=metadata,
                ))
        except SQLAlchemyError as e:
            api_logger.error(f"Failed to record activity {_value(activity_type)} on board {board_id}: {e}")

    @staticmethod
    async def list_activities(db: AsyncSession, board_id: int, limit: int = 50) -> List[Activity]:
        query = (
            select(Activity)
            .where(Activity.board_id == board_id)
            .order_by(Activity.created_at.desc())
            .limit(limit)
        )
        result = await db.execute(query)
        return list(result.scalars().all())
