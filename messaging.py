"""Conversations between two users and their append-only message log."""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from errors import AuthorizationError, NotFoundError, ValidationError
from models import Conversation, Message, Role, User, utcnow

logger = logging.getLogger(__name__)


def pair_key(first_id: int, second_id: int) -> str:
    low, high = sorted((first_id, second_id))
    return f"{low}:{high}"


def find_conversation(session: Session, first_id: int, second_id: int) -> Optional[Conversation]:
    return session.exec(
        select(Conversation).where(Conversation.pair_key == pair_key(first_id, second_id))
    ).first()


def open_conversation(
    session: Session, initiator: User, other: User, commit: bool = True
) -> Tuple[Conversation, bool]:
    """Return the pair's conversation, creating it if needed.

    Returns (conversation, created). With ``commit=False`` the new row is only
    flushed, inside a savepoint, so the caller can fold it into a larger transaction.
    """
    if initiator.id == other.id:
        raise ValidationError("Cannot start a conversation with yourself")

    existing = find_conversation(session, initiator.id, other.id)
    if existing is not None:
        return existing, False

    conversation = Conversation(
        participant1_id=initiator.id,
        participant2_id=other.id,
        participant2_type=other.role,
        pair_key=pair_key(initiator.id, other.id),
    )
    if not commit:
        first_id, second_id = initiator.id, other.id
        try:
            # a savepoint keeps the caller's pending changes if the pair already exists
            with session.begin_nested():
                session.add(conversation)
        except IntegrityError:
            existing = find_conversation(session, first_id, second_id)
            if existing is None:
                raise
            return existing, False
        return conversation, True

    session.add(conversation)
    try:
        session.commit()
    except IntegrityError:
        # the other participant opened it first
        session.rollback()
        existing = find_conversation(session, initiator.id, other.id)
        if existing is None:
            raise
        return existing, False
    session.refresh(conversation)
    logger.info("Conversation %s opened between %s and %s", conversation.id, initiator.id, other.id)
    return conversation, True


def start_conversation(
    session: Session, initiator: User, participant2_id: int, participant2_type: str
) -> Tuple[Conversation, bool]:
    other = session.get(User, participant2_id)
    if other is None:
        raise NotFoundError("Participant not found")
    if Role(other.role) != Role(participant2_type):
        raise ValidationError("Participant role does not match participant2_type")
    return open_conversation(session, initiator, other)


def list_conversations(session: Session, user: User) -> List[Conversation]:
    conversations = session.exec(
        select(Conversation).where(
            or_(Conversation.participant1_id == user.id, Conversation.participant2_id == user.id)
        )
    ).all()
    return sorted(
        conversations,
        key=lambda c: (c.last_message_at or c.created_at, c.id),
        reverse=True,
    )


def get_conversation_for(session: Session, conversation_id: int, user: User) -> Conversation:
    conversation = session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    if not conversation.has_participant(user.id):
        raise AuthorizationError("Not authorized to view this conversation")
    return conversation


def read_conversation(
    session: Session, conversation_id: int, reader: User
) -> Tuple[Conversation, List[Message]]:
    """Fetch a conversation's messages, marking the other side's unread ones as read."""
    conversation = get_conversation_for(session, conversation_id, reader)

    result = session.exec(
        update(Message)
        .where(
            Message.conversation_id == conversation.id,
            Message.sender_id != reader.id,
            Message.is_read == False,  # noqa: E712
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.refresh(conversation)
    if result.rowcount:
        logger.debug("User %s read %d message(s) in conversation %s", reader.id, result.rowcount, conversation.id)

    messages = session.exec(
        select(Message)
        .where(Message.conversation_id == conversation.id)
        .order_by(Message.created_at, Message.id)
    ).all()
    return conversation, list(messages)


def send_message(session: Session, conversation_id: int, sender: User, text: str) -> Message:
    if not text or not text.strip():
        raise ValidationError("Message text is required")

    conversation = session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    if not conversation.has_participant(sender.id):
        raise AuthorizationError("Not authorized to send message in this conversation")

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender.id,
        text=text,
        created_at=utcnow(),
    )
    session.add(message)
    conversation.last_message = text
    conversation.last_message_at = message.created_at
    session.add(conversation)
    session.commit()
    session.refresh(message)
    return message


def unread_count(session: Session, user: User) -> int:
    return session.exec(
        select(func.count(Message.id))
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(
            or_(Conversation.participant1_id == user.id, Conversation.participant2_id == user.id),
            Message.sender_id != user.id,
            Message.is_read == False,  # noqa: E712
        )
    ).one()
