import logging
from datetime import datetime, timezone
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_, func, desc, delete, update

from schoolmgmt.database import get_db
from schoolmgmt.schemas.notifications import (
    NotificationInDB, NotificationCreate, NotificationBroadcast, BroadcastResult, UnreadCount,
)
from schoolmgmt.models.notifications import Notification
from schoolmgmt.models.users import User
from schoolmgmt.middleware.authentication import (
    get_current_user, validate_admin_access, ACADEMIC_ROLES, SUPER_ADMIN,
)

logger = logging.getLogger(__name__)

router = APIRouter()

async def _get_own_notification(db: AsyncSession, notification_id: int, user: User) -> Notification:
    result = await db.execute(
        select(Notification).where(and_(Notification.id == notification_id, Notification.user_id == user.id))
    )
    notification = result.scalars().first()

    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )

    return notification

@router.get("/notifications", response_model=List[NotificationInDB])
async def get_notifications(
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    The current user's notifications, newest first.
    """
    query = select(Notification).where(Notification.user_id == current_user.id)
    if unread_only:
        query = query.where(Notification.is_read == False)

    query = query.order_by(desc(Notification.created_at), desc(Notification.id)).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()

async def _load_recipients(db: AsyncSession, user_ids: List[int], sender: User) -> List[User]:
    wanted = list(dict.fromkeys(user_ids))
    query = select(User).where(User.id.in_(wanted))
    if sender.role_name != SUPER_ADMIN:
        query = query.where(User.school_id == sender.school_id)
    result = await db.execute(query)
    recipients = result.scalars().all()

    missing = sorted(set(wanted) - {user.id for user in recipients})
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User not found: {', '.join(str(i) for i in missing)}"
        )

    return recipients

@router.post("/notifications", response_model=NotificationInDB, status_code=status.HTTP_201_CREATED)
async def create_notification(
    notification_data: NotificationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Send a notification to one user of the sender's school (staff only).
    """
    await validate_admin_access(current_user, db, ACADEMIC_ROLES)
    await _load_recipients(db, [notification_data.user_id], current_user)

    notification = Notification(**notification_data.model_dump())
    db.add(notification)
    await db.commit()
    await db.refresh(notification)

    return notification

@router.post("/notifications/broadcast", response_model=BroadcastResult, status_code=status.HTTP_201_CREATED)
async def broadcast_notification(
    broadcast: NotificationBroadcast,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Send the same notification to several users; each recipient gets it once.
    """
    await validate_admin_access(current_user, db, ACADEMIC_ROLES)
    recipients = await _load_recipients(db, broadcast.user_ids, current_user)

    content = broadcast.model_dump(exclude={"user_ids"})
    db.add_all([Notification(user_id=user.id, **content) for user in recipients])
    await db.commit()

    logger.info(f"User {current_user.id} broadcast '{broadcast.type}' to {len(recipients)} user(s)")
    return {"sent": len(recipients)}

@router.get("/notifications/unread-count", response_model=UnreadCount)
async def get_unread_count(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    result = await db.execute(
        select(func.count(Notification.id)).where(
            and_(Notification.user_id == current_user.id, Notification.is_read == False)
        )
    )
    return {"unread": result.scalar() or 0}

@router.put("/notifications/read-all", response_model=UnreadCount)
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Mark every unread notification of the current user as read.
    """
    await db.execute(
        update(Notification)
        .where(and_(Notification.user_id == current_user.id, Notification.is_read == False))
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    await db.commit()
    return {"unread": 0}

@router.put("/notifications/{notification_id}/read", response_model=NotificationInDB)
async def mark_notification_read(
    notification_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    notification = await _get_own_notification(db, notification_id, current_user)

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.commit()
        await db.refresh(notification)

    return notification

@router.delete("/notifications/read", status_code=status.HTTP_204_NO_CONTENT)
async def delete_read_notifications(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await db.execute(
        delete(Notification).where(and_(Notification.user_id == current_user.id, Notification.is_read == True))
    )
    await db.commit()
    return None

@router.delete("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    notification = await _get_own_notification(db, notification_id, current_user)

    await db.execute(delete(Notification).where(Notification.id == notification.id))
    await db.commit()
    return None
