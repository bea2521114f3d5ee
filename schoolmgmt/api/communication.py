from datetime import datetime, timezone
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import or_, and_, func, desc, delete

from schoolmgmt.database import get_db
from schoolmgmt.schemas.communication import MessageCreate, MessageInDB, Contact
from schoolmgmt.models.communication import Message
from schoolmgmt.models.users import User
from schoolmgmt.middleware.authentication import get_current_user, SUPER_ADMIN

router = APIRouter()

@router.post("/messages", response_model=MessageInDB, status_code=status.HTTP_201_CREATED)
async def send_message(
    message_data: MessageCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Send a message to another user of the same school.

    A reply names the message it answers; that message must be part of a
    conversation the sender is in.
    """
    if message_data.recipient_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot message yourself"
        )

    recipient_result = await db.execute(select(User).where(User.id == message_data.recipient_id))
    recipient = recipient_result.scalars().first()
    if not recipient:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Recipient not found"
        )

    if current_user.role_name != SUPER_ADMIN and current_user.school_id != recipient.school_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only message users from your school"
        )

    if message_data.parent_message_id:
        parent_result = await db.execute(
            select(Message).where(
                and_(
                    Message.id == message_data.parent_message_id,
                    or_(Message.sender_id == current_user.id, Message.recipient_id == current_user.id),
                )
            )
        )
        if not parent_result.scalars().first():
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Original message not found"
            )

    db_message = Message(sender_id=current_user.id, **message_data.model_dump())
    db.add(db_message)
    await db.commit()
    await db.refresh(db_message)

    return db_message

@router.get("/messages", response_model=List[MessageInDB])
async def get_inbox(
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Messages received by the current user, newest first.
    """
    query = select(Message).where(Message.recipient_id == current_user.id)
    if unread_only:
        query = query.where(Message.is_read == False)

    query = query.order_by(desc(Message.created_at), desc(Message.id)).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()

@router.get("/messages/unread-count", response_model=dict)
async def get_unread_count(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    result = await db.execute(
        select(func.count(Message.id)).where(
            and_(Message.recipient_id == current_user.id, Message.is_read == False)
        )
    )
    return {"unread": result.scalar() or 0}

@router.get("/messages/contacts", response_model=List[Contact])
async def get_contacts(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Active users of the current user's school that can be messaged.
    """
    result = await db.execute(
        select(User)
        .where(
            and_(
                User.school_id == current_user.school_id,
                User.id != current_user.id,
                User.is_active == True,
            )
        )
        .order_by(User.full_name, User.id)
    )
    return result.scalars().all()

@router.get("/messages/conversation/{user_id}", response_model=List[MessageInDB])
async def get_conversation(
    user_id: int = Path(..., gt=0),
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Both directions of the conversation with one user, oldest first.
    """
    query = (
        select(Message)
        .where(
            or_(
                and_(Message.sender_id == current_user.id, Message.recipient_id == user_id),
                and_(Message.sender_id == user_id, Message.recipient_id == current_user.id),
            )
        )
        .order_by(Message.created_at, Message.id)
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(query)
    return result.scalars().all()

@router.put("/messages/{message_id}/read", response_model=MessageInDB)
async def mark_message_read(
    message_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    result = await db.execute(select(Message).where(Message.id == message_id))
    message = result.scalars().first()

    if not message:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found"
        )

    if message.recipient_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the recipient can mark a message as read"
        )

    if not message.is_read:
        message.is_read = True
        message.read_at = datetime.now(timezone.utc)
        await db.commit()
        await db.refresh(message)

    return message

@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Delete a message. Either side of the conversation may delete it.
    """
    result = await db.execute(select(Message).where(Message.id == message_id))
    message = result.scalars().first()

    if not message:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found"
        )

    if current_user.id not in (message.sender_id, message.recipient_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to delete this message"
        )

    await db.execute(delete(Message).where(Message.id == message.id))
    await db.commit()
    return None
