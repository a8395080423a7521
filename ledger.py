"""Volunteer requests: soliciting volunteers for a claimed donation and their answers."""
import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import config
import lifecycle
from errors import (
    AlreadyResolvedError,
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from models import Donation, DonationStatus, RequestStatus, Role, User, VolunteerRequest, utcnow

logger = logging.getLogger(__name__)


def _solicitable_donation(session: Session, donation_id: int, organization: User) -> Donation:
    donation = lifecycle.get_donation(session, donation_id)
    if donation.organization_id != organization.id:
        raise AuthorizationError("Not authorized to request volunteers for this donation")
    if donation.status != DonationStatus.CLAIMING:
        raise StateConflictError("Volunteers can only be requested for donations in claiming status")
    return donation


def _default_message(donation: Donation) -> str:
    return f"Volunteer needed for donation: {donation.title}"


def _record_requests(
    session: Session,
    donation: Donation,
    organization: User,
    volunteers: List[User],
    message: Optional[str],
) -> List[VolunteerRequest]:
    """Insert pending requests and bump volunteer_count in one transaction."""
    bumped = session.exec(
        update(Donation)
        .where(
            Donation.id == donation.id,
            Donation.status == DonationStatus.CLAIMING,
            Donation.organization_id == organization.id,
        )
        .values(volunteer_count=Donation.volunteer_count + len(volunteers), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    if bumped != 1:
        session.rollback()
        raise StateConflictError("Donation is no longer claimed by this organization")

    requests = [
        VolunteerRequest(
            donation_id=donation.id,
            organization_id=organization.id,
            volunteer_id=volunteer.id,
            status=RequestStatus.PENDING,
            message=message or _default_message(donation),
        )
        for volunteer in volunteers
    ]
    session.add_all(requests)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise StateConflictError("A volunteer request already exists for this donation and volunteer")

    for req in requests:
        session.refresh(req)
    session.refresh(donation)
    return requests


def request_volunteer(
    session: Session,
    donation_id: int,
    organization: User,
    volunteer_id: int,
    message: Optional[str] = None,
) -> VolunteerRequest:
    donation = _solicitable_donation(session, donation_id, organization)

    volunteer = session.get(User, volunteer_id)
    if volunteer is None:
        raise NotFoundError("Volunteer not found")
    if volunteer.role != Role.VOLUNTEER:
        raise ValidationError("Invalid volunteer")

    existing = session.exec(
        select(VolunteerRequest).where(
            VolunteerRequest.donation_id == donation.id,
            VolunteerRequest.volunteer_id == volunteer.id,
        )
    ).first()
    if existing is not None:
        raise StateConflictError("A volunteer request already exists for this donation and volunteer")

    (request,) = _record_requests(session, donation, organization, [volunteer], message)
    logger.info(
        "Organization %s requested volunteer %s for donation %s",
        organization.id, volunteer.id, donation.id,
    )
    return request


def eligible_volunteers(session: Session, donation_id: int, limit: Optional[int] = None) -> List[User]:
    """Volunteers not yet asked about this donation, oldest registration first."""
    already_asked = select(VolunteerRequest.volunteer_id).where(
        VolunteerRequest.donation_id == donation_id
    )
    query = (
        select(User)
        .where(User.role == Role.VOLUNTEER, User.id.not_in(already_asked))
        .order_by(User.created_at, User.id)
    )
    if limit is not None:
        query = query.limit(limit)
    return list(session.exec(query).all())


def request_volunteers(
    session: Session,
    donation_id: int,
    organization: User,
    count: int,
    message: Optional[str] = None,
) -> List[VolunteerRequest]:
    """Fan a donation out to ``count`` volunteers who have not been asked yet."""
    limit = config.MAX_VOLUNTEERS_PER_REQUEST
    if count < 1 or count > limit:
        raise ValidationError(f"Volunteer count must be between 1 and {limit}")

    donation = _solicitable_donation(session, donation_id, organization)
    volunteers = eligible_volunteers(session, donation.id, limit=count)
    if len(volunteers) < count:
        raise StateConflictError(
            f"Only {len(volunteers)} volunteers available, but {count} requested"
        )

    requests = _record_requests(session, donation, organization, volunteers, message)
    logger.info(
        "Organization %s requested %d volunteer(s) for donation %s (volunteer_count=%d)",
        organization.id, count, donation.id, donation.volunteer_count,
    )
    return requests


def get_request(session: Session, request_id: int) -> VolunteerRequest:
    request = session.get(VolunteerRequest, request_id)
    if request is None:
        raise NotFoundError("Volunteer request not found")
    return request


def respond_to_request(
    session: Session,
    request_id: int,
    volunteer: User,
    decision,
    message: Optional[str] = None,
) -> VolunteerRequest:
    """Accept or reject a pending request; the answer is final.

    The first acceptance moves the donation to in_transit and rejects the
    other pending requests for it. A later acceptance loses with a
    StateConflictError and leaves its request pending.
    """
    decision = RequestStatus(decision)
    if decision == RequestStatus.PENDING:
        raise ValidationError("Response must be accepted or rejected")

    request = get_request(session, request_id)
    if request.volunteer_id != volunteer.id:
        raise AuthorizationError("Not authorized to respond to this request")
    if request.status != RequestStatus.PENDING:
        raise AlreadyResolvedError()

    if decision == RequestStatus.ACCEPTED:
        if not lifecycle.bind_volunteer(session, request.donation_id, volunteer.id):
            session.rollback()
            logger.warning(
                "Volunteer %s lost the race for donation %s", volunteer.id, request.donation_id
            )
            raise StateConflictError("Donation is no longer waiting for a volunteer")

    values = {"status": decision, "updated_at": utcnow()}
    if message is not None:
        values["message"] = message
    answered = session.exec(
        update(VolunteerRequest)
        .where(VolunteerRequest.id == request.id, VolunteerRequest.status == RequestStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    ).rowcount
    if answered != 1:
        session.rollback()
        raise AlreadyResolvedError()

    if decision == RequestStatus.ACCEPTED:
        lifecycle.reject_pending_requests(session, request.donation_id, keep_request_id=request.id)

    session.commit()
    session.refresh(request)
    logger.info(
        "Volunteer %s %s request %s for donation %s",
        volunteer.id, decision.value, request.id, request.donation_id,
    )
    return request


def list_for_volunteer(
    session: Session, volunteer: User, status: Optional[RequestStatus] = None
) -> List[VolunteerRequest]:
    query = select(VolunteerRequest).where(VolunteerRequest.volunteer_id == volunteer.id)
    if status is not None:
        query = query.where(VolunteerRequest.status == status)
    query = query.order_by(VolunteerRequest.created_at.desc(), VolunteerRequest.id.desc())
    return list(session.exec(query).all())


def list_for_donation(session: Session, donation_id: int) -> List[VolunteerRequest]:
    return list(
        session.exec(
            select(VolunteerRequest)
            .where(VolunteerRequest.donation_id == donation_id)
            .order_by(VolunteerRequest.created_at, VolunteerRequest.id)
        ).all()
    )
