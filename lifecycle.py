"""Donation records and the status machine that governs them.

Every status change goes through a conditional UPDATE guarded by the status
the caller expects, so two racing requests cannot both win: the loser sees
zero affected rows and gets a StateConflictError.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, update
from sqlmodel import Session, select

from errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from messaging import open_conversation
from models import (
    Donation,
    DonationCategory,
    DonationStatus,
    RequestStatus,
    Role,
    User,
    VolunteerRequest,
    utcnow,
)
from schemas import DonationCreate, DonationUpdate

logger = logging.getLogger(__name__)


class Actor(str, Enum):
    ORGANIZATION = "organization"
    VOLUNTEER = "volunteer"
    SYSTEM = "system"


# (from, to) -> who may trigger it
TRANSITIONS: Dict[Tuple[DonationStatus, DonationStatus], Actor] = {
    (DonationStatus.AVAILABLE, DonationStatus.CLAIMING): Actor.ORGANIZATION,
    (DonationStatus.AVAILABLE, DonationStatus.EXPIRED): Actor.SYSTEM,
    (DonationStatus.CLAIMING, DonationStatus.IN_TRANSIT): Actor.SYSTEM,
    (DonationStatus.CLAIMING, DonationStatus.CANCELLED): Actor.ORGANIZATION,
    (DonationStatus.IN_TRANSIT, DonationStatus.COMPLETED): Actor.VOLUNTEER,
    (DonationStatus.IN_TRANSIT, DonationStatus.CANCELLED): Actor.ORGANIZATION,
}

TERMINAL_STATUSES = frozenset(
    {DonationStatus.COMPLETED, DonationStatus.CANCELLED, DonationStatus.EXPIRED}
)

# listing order for a donor's own donations
STATUS_ORDER = [
    DonationStatus.AVAILABLE,
    DonationStatus.CLAIMING,
    DonationStatus.IN_TRANSIT,
    DonationStatus.COMPLETED,
    DonationStatus.CANCELLED,
    DonationStatus.EXPIRED,
]

CLAIMED_STATUSES = (
    DonationStatus.CLAIMING,
    DonationStatus.IN_TRANSIT,
    DonationStatus.COMPLETED,
)
ASSIGNED_STATUSES = (DonationStatus.IN_TRANSIT, DonationStatus.COMPLETED)

REQUIRED_FIELDS = ("title", "category", "quantity", "unit", "expiry_date", "pickup_address")


def _status(value) -> DonationStatus:
    return DonationStatus(value)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def check_transition(current, requested, actor: Actor) -> None:
    """Raise unless ``actor`` may move a donation from ``current`` to ``requested``."""
    current, requested = _status(current), _status(requested)
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            current.value, requested.value, message=f"Donation is already {current.value}"
        )
    required = TRANSITIONS.get((current, requested))
    if required is None:
        raise InvalidTransitionError(current.value, requested.value)
    if required == actor:
        return
    if required == Actor.SYSTEM:
        raise InvalidTransitionError(
            current.value,
            requested.value,
            message=f"Status {requested.value} is set automatically and cannot be requested",
        )
    raise AuthorizationError(
        f"Only the {required.value} can change status from {current.value} to {requested.value}"
    )


def get_donation(session: Session, donation_id: int) -> Donation:
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise NotFoundError("Donation not found")
    return donation


def get_visible_donation(session: Session, donation_id: int, user: User, role: Role) -> Donation:
    donation = get_donation(session, donation_id)
    if role == Role.ADMIN or donation.status == DonationStatus.AVAILABLE:
        return donation
    if user.id in (donation.donor_id, donation.organization_id, donation.volunteer_id):
        return donation
    raise AuthorizationError("Not authorized to view this donation")


def _guarded_update(
    session: Session,
    donation_id: int,
    expected: Iterable[DonationStatus],
    *criteria,
    **values,
) -> bool:
    """UPDATE the donation only if its status is still one of ``expected``."""
    stmt = (
        update(Donation)
        .where(Donation.id == donation_id, Donation.status.in_(list(expected)), *criteria)
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return session.exec(stmt).rowcount == 1


def _conflict(
    session: Session, donation_id: int, requested: DonationStatus, message: Optional[str] = None
):
    """Roll back and build the error for a guarded update that lost a race.

    The row may have been deleted by the winner, in which case the caller
    gets a NotFoundError instead of a transition error.
    """
    session.rollback()
    donation = session.get(Donation, donation_id)
    if donation is None:
        logger.warning("Donation %s disappeared during a %s change", donation_id, requested.value)
        return NotFoundError("Donation not found")
    logger.warning(
        "Donation %s: %s -> %s rejected (concurrent change)",
        donation.id, _status(donation.status).value, requested.value,
    )
    return InvalidTransitionError(
        _status(donation.status).value, requested.value, message=message
    )


def reject_pending_requests(
    session: Session, donation_id: int, keep_request_id: Optional[int] = None
) -> int:
    """Reject every still-pending volunteer request for a donation. No commit."""
    stmt = update(VolunteerRequest).where(
        VolunteerRequest.donation_id == donation_id,
        VolunteerRequest.status == RequestStatus.PENDING,
    )
    if keep_request_id is not None:
        stmt = stmt.where(VolunteerRequest.id != keep_request_id)
    stmt = stmt.values(status=RequestStatus.REJECTED, updated_at=utcnow()).execution_options(
        synchronize_session=False
    )
    return session.exec(stmt).rowcount


# Donation records

def create_donation(session: Session, donor: User, data: DonationCreate) -> Donation:
    expiry = as_utc(data.expiry_date)
    if expiry <= utcnow():
        raise ValidationError("Expiry date must be in the future")

    donation = Donation(
        donor_id=donor.id,
        title=data.title,
        description=data.description,
        category=data.category,
        quantity=data.quantity,
        unit=data.unit,
        expiry_date=expiry,
        pickup_address=data.pickup_address,
        pickup_time=as_utc(data.pickup_time),
        image_url=data.image_url,
        status=DonationStatus.AVAILABLE,
    )
    session.add(donation)
    session.commit()
    session.refresh(donation)
    logger.info("Donor %s created donation %s", donor.id, donation.id)
    return donation


def _get_owned(session: Session, donation_id: int, donor: User, verb: str) -> Donation:
    donation = get_donation(session, donation_id)
    if donation.donor_id != donor.id:
        raise AuthorizationError(f"Not authorized to {verb} this donation")
    if donation.status != DonationStatus.AVAILABLE:
        raise StateConflictError(
            f"Only available donations can be changed (status: {_status(donation.status).value})"
        )
    return donation


def update_donation(session: Session, donation_id: int, donor: User, data: DonationUpdate) -> Donation:
    donation = _get_owned(session, donation_id, donor, "edit")

    changes = data.model_dump(exclude_unset=True)
    for field in REQUIRED_FIELDS:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be empty")
    if "expiry_date" in changes:
        changes["expiry_date"] = as_utc(changes["expiry_date"])
        if changes["expiry_date"] <= utcnow():
            raise ValidationError("Expiry date must be in the future")
    if "pickup_time" in changes:
        changes["pickup_time"] = as_utc(changes["pickup_time"])
    if not changes:
        return donation

    if not _guarded_update(
        session, donation.id, [DonationStatus.AVAILABLE], Donation.donor_id == donor.id, **changes
    ):
        raise _conflict(
            session, donation.id, DonationStatus.AVAILABLE, "Only available donations can be edited"
        )
    session.commit()
    session.refresh(donation)
    logger.info("Donor %s edited donation %s (%s)", donor.id, donation.id, ", ".join(changes))
    return donation


def delete_donation(session: Session, donation_id: int, donor: User) -> None:
    donation = _get_owned(session, donation_id, donor, "delete")

    session.exec(delete(VolunteerRequest).where(VolunteerRequest.donation_id == donation.id))
    result = session.exec(
        delete(Donation).where(
            Donation.id == donation.id, Donation.status == DonationStatus.AVAILABLE
        )
    )
    if result.rowcount != 1:
        raise _conflict(
            session, donation.id, DonationStatus.AVAILABLE, "Only available donations can be deleted"
        )
    session.commit()
    logger.info("Donor %s deleted donation %s", donor.id, donation_id)


def list_donor_donations(session: Session, donor: User) -> List[Donation]:
    donations = session.exec(
        select(Donation)
        .where(Donation.donor_id == donor.id)
        .order_by(Donation.created_at.desc(), Donation.id.desc())
    ).all()
    return sorted(donations, key=lambda d: STATUS_ORDER.index(_status(d.status)))


# Expiry sweep

def sweep_expired(session: Session, now: Optional[datetime] = None) -> int:
    """Mark available donations whose expiry has passed as expired.

    Idempotent; every listing of available donations calls this first.
    """
    now = as_utc(now) or utcnow()
    result = session.exec(
        update(Donation)
        .where(Donation.status == DonationStatus.AVAILABLE, Donation.expiry_date < now)
        .values(status=DonationStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if result.rowcount:
        logger.info("Expired %d donation(s)", result.rowcount)
    return result.rowcount


def list_available(session: Session, category: Optional[DonationCategory] = None) -> List[Donation]:
    """Available, unclaimed donations, newest first. Runs the expiry sweep first."""
    sweep_expired(session)
    query = select(Donation).where(
        Donation.status == DonationStatus.AVAILABLE,
        Donation.organization_id.is_(None),
    )
    if category is not None:
        query = query.where(Donation.category == category)
    query = query.order_by(Donation.created_at.desc(), Donation.id.desc())
    return list(session.exec(query).all())


# Organization / volunteer driven transitions

def claim_donation(session: Session, donation_id: int, organization: User):
    """available -> claiming, opening a conversation with the donor in the same transaction.

    Returns (donation, conversation).
    """
    sweep_expired(session)
    donation = get_donation(session, donation_id)
    if donation.status != DonationStatus.AVAILABLE:
        raise InvalidTransitionError(
            _status(donation.status).value,
            DonationStatus.CLAIMING.value,
            message=f"Donation is not available for claiming (status: {_status(donation.status).value})",
        )
    check_transition(donation.status, DonationStatus.CLAIMING, Actor.ORGANIZATION)

    claimed = _guarded_update(
        session,
        donation.id,
        [DonationStatus.AVAILABLE],
        Donation.organization_id.is_(None),
        status=DonationStatus.CLAIMING,
        organization_id=organization.id,
    )
    if not claimed:
        raise _conflict(
            session, donation.id, DonationStatus.CLAIMING, "Donation is not available for claiming"
        )

    donor = session.get(User, donation.donor_id)
    conversation, _ = open_conversation(session, organization, donor, commit=False)
    session.commit()
    session.refresh(donation)
    session.refresh(conversation)
    logger.info(
        "Organization %s claimed donation %s (conversation %s)",
        organization.id, donation.id, conversation.id,
    )
    return donation, conversation


def bind_volunteer(session: Session, donation_id: int, volunteer_id: int) -> bool:
    """claiming -> in_transit on a volunteer's acceptance. No commit."""
    return _guarded_update(
        session,
        donation_id,
        [DonationStatus.CLAIMING],
        status=DonationStatus.IN_TRANSIT,
        volunteer_id=volunteer_id,
    )


def _ensure_party(donation: Donation, user: User, actor: Actor) -> None:
    if actor == Actor.ORGANIZATION and donation.organization_id != user.id:
        raise AuthorizationError("Not authorized to update this donation")
    if actor == Actor.VOLUNTEER and donation.volunteer_id != user.id:
        raise AuthorizationError("Not authorized to update this donation")


def change_status(
    session: Session, donation_id: int, requested, user: User, actor: Actor
) -> Donation:
    """Apply a status change requested by an organization or a volunteer."""
    requested = _status(requested)
    donation = get_donation(session, donation_id)
    _ensure_party(donation, user, actor)
    if actor == Actor.VOLUNTEER and requested != DonationStatus.COMPLETED:
        raise InvalidTransitionError(
            _status(donation.status).value,
            requested.value,
            message="Volunteers can only mark donations as completed",
        )
    check_transition(donation.status, requested, actor)

    if requested == DonationStatus.CANCELLED:
        return _release(session, donation, user)
    if requested == DonationStatus.COMPLETED:
        return _complete(session, donation, user)
    raise InvalidTransitionError(_status(donation.status).value, requested.value)


def _release(session: Session, donation: Donation, organization: User) -> Donation:
    # cancelled is never persisted: the donation goes straight back to available
    released = _guarded_update(
        session,
        donation.id,
        [DonationStatus.CLAIMING, DonationStatus.IN_TRANSIT],
        Donation.organization_id == organization.id,
        status=DonationStatus.AVAILABLE,
        organization_id=None,
        volunteer_id=None,
    )
    if not released:
        raise _conflict(session, donation.id, DonationStatus.CANCELLED)
    rejected = reject_pending_requests(session, donation.id)
    session.commit()
    session.refresh(donation)
    logger.info(
        "Organization %s cancelled claim on donation %s (%d pending request(s) rejected)",
        organization.id, donation.id, rejected,
    )
    return donation


def _complete(session: Session, donation: Donation, volunteer: User) -> Donation:
    completed = _guarded_update(
        session,
        donation.id,
        [DonationStatus.IN_TRANSIT],
        Donation.volunteer_id == volunteer.id,
        status=DonationStatus.COMPLETED,
    )
    if not completed:
        raise _conflict(session, donation.id, DonationStatus.COMPLETED)
    session.commit()
    session.refresh(donation)
    logger.info("Volunteer %s completed donation %s", volunteer.id, donation.id)
    return donation


def cancel_donation(session: Session, donation_id: int, organization: User) -> Donation:
    return change_status(session, donation_id, DonationStatus.CANCELLED, organization, Actor.ORGANIZATION)


def complete_donation(session: Session, donation_id: int, volunteer: User) -> Donation:
    return change_status(session, donation_id, DonationStatus.COMPLETED, volunteer, Actor.VOLUNTEER)


def list_claimed(session: Session, organization: User, status: Optional[DonationStatus] = None) -> List[Donation]:
    statuses = [status] if status in CLAIMED_STATUSES else list(CLAIMED_STATUSES)
    donations = session.exec(
        select(Donation)
        .where(Donation.organization_id == organization.id, Donation.status.in_(statuses))
        .order_by(Donation.updated_at.desc(), Donation.id.desc())
    ).all()
    return sorted(donations, key=lambda d: STATUS_ORDER.index(_status(d.status)))


def list_assigned(session: Session, volunteer: User, status: Optional[DonationStatus] = None) -> List[Donation]:
    statuses = [status] if status in ASSIGNED_STATUSES else list(ASSIGNED_STATUSES)
    return list(
        session.exec(
            select(Donation)
            .where(Donation.volunteer_id == volunteer.id, Donation.status.in_(statuses))
            .order_by(Donation.updated_at.desc(), Donation.id.desc())
        ).all()
    )
