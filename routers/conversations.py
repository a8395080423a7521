from fastapi import APIRouter, Depends, Response, status

import messaging
from db import SessionDep
from permissions import Action
from schemas import ConversationCreate, MessageCreate
from .auth import require_action

router = APIRouter(tags=["conversations"])

MessagingUserDep = Depends(require_action(Action.MESSAGE))


@router.get("/")
def list_conversations(session: SessionDep, current: dict = MessagingUserDep):
    return messaging.list_conversations(session, current["user"])


@router.get("/unread-count")
def get_unread_count(session: SessionDep, current: dict = MessagingUserDep):
    return {"unread_count": messaging.unread_count(session, current["user"])}


@router.post("/")
def create_conversation(
    conversation_in: ConversationCreate,
    response: Response,
    session: SessionDep,
    current: dict = MessagingUserDep,
):
    """
    Start a conversation. If the pair already has one, it is returned with 200.
    """
    conversation, created = messaging.start_conversation(
        session,
        current["user"],
        conversation_in.participant2_id,
        conversation_in.participant2_type,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return conversation


@router.get("/{conversation_id}")
def get_conversation(conversation_id: int, session: SessionDep, current: dict = MessagingUserDep):
    """
    The conversation and its messages, oldest first. Reading marks the
    other participant's messages as read.
    """
    conversation, messages = messaging.read_conversation(session, conversation_id, current["user"])
    return {"conversation": conversation, "messages": messages}


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
def send_message(
    conversation_id: int,
    message_in: MessageCreate,
    session: SessionDep,
    current: dict = MessagingUserDep,
):
    return messaging.send_message(session, conversation_id, current["user"], message_in.text)
