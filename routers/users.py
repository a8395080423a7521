# routers/users.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Response
from sqlalchemy import delete, update
from sqlmodel import or_, select

from db import SessionDep
from errors import NotFoundError
from models import Conversation, Donation, DonationStatus, Message, Role, User, VolunteerRequest
from schemas import UserSummary
from .auth import CurrentUserRoleDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])

CONTACT_ROLES = (Role.VOLUNTEER, Role.ORGANIZATION)


@router.get("/available", response_model=List[UserSummary])
def list_available_users(
    session: SessionDep,
    current: CurrentUserRoleDep,
    role: Optional[Role] = None,
):
    """
    Volunteers and organizations the current user can start a conversation with.
    """
    roles = [role] if role in CONTACT_ROLES else list(CONTACT_ROLES)
    return session.exec(
        select(User)
        .where(User.role.in_(roles), User.id != current["user"].id)
        .order_by(User.username)
    ).all()


@router.get("/{user_id}", response_model=UserSummary)
def get_user(user_id: int, session: SessionDep, current: CurrentUserRoleDep):
    """
    Get a single user by ID.
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.delete("/me", status_code=204)
def delete_own_account(
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    user = current["user"]
    user_id = user.id

    # 1) Donations given by this user go away with their volunteer requests
    my_donations = select(Donation.id).where(Donation.donor_id == user_id)
    session.exec(delete(VolunteerRequest).where(VolunteerRequest.donation_id.in_(my_donations)))
    session.exec(delete(Donation).where(Donation.donor_id == user_id))

    # 2) Requests sent to or by this user
    session.exec(
        delete(VolunteerRequest).where(
            or_(VolunteerRequest.volunteer_id == user_id, VolunteerRequest.organization_id == user_id)
        )
    )

    # 3) Other donations lose the reference; open claims are released
    session.exec(
        update(Donation)
        .where(
            Donation.organization_id == user_id,
            Donation.status.in_([DonationStatus.CLAIMING, DonationStatus.IN_TRANSIT]),
        )
        .values(status=DonationStatus.AVAILABLE, organization_id=None, volunteer_id=None)
    )
    session.exec(
        update(Donation)
        .where(Donation.volunteer_id == user_id, Donation.status == DonationStatus.IN_TRANSIT)
        .values(status=DonationStatus.CLAIMING, volunteer_id=None)
    )
    session.exec(
        update(Donation).where(Donation.volunteer_id == user_id).values(volunteer_id=None)
    )
    session.exec(
        update(Donation).where(Donation.organization_id == user_id).values(organization_id=None)
    )

    # 4) Conversations and their messages
    my_conversations = select(Conversation.id).where(
        or_(Conversation.participant1_id == user_id, Conversation.participant2_id == user_id)
    )
    session.exec(delete(Message).where(Message.conversation_id.in_(my_conversations)))
    session.exec(delete(Conversation).where(Conversation.id.in_(my_conversations)))

    # 5) Finally, delete the user record itself
    session.delete(user)
    session.commit()
    logger.info("User %s deleted their account", user_id)

    return Response(status_code=204)
