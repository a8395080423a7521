from typing import List, Optional

from fastapi import APIRouter, Depends

import ledger
import lifecycle
from db import SessionDep
from lifecycle import Actor
from models import Donation, DonationStatus, RequestStatus, VolunteerRequest
from permissions import Action
from schemas import RequestResponse, StatusUpdate, envelope
from .auth import require_action

router = APIRouter(tags=["volunteer"])


@router.get("/requests", response_model=List[VolunteerRequest])
def list_requests(
    session: SessionDep,
    current: dict = Depends(require_action(Action.VIEW_VOLUNTEER_REQUESTS)),
    status: Optional[RequestStatus] = None,
):
    return ledger.list_for_volunteer(session, current["user"], status)


@router.put("/requests/{request_id}/respond")
def respond_to_request(
    request_id: int,
    response_in: RequestResponse,
    session: SessionDep,
    current: dict = Depends(require_action(Action.RESPOND_TO_REQUEST)),
):
    """
    Accept or reject a pending request. Accepting puts the donation in transit.
    """
    request = ledger.respond_to_request(
        session, request_id, current["user"], response_in.status, response_in.message
    )
    donation = lifecycle.get_donation(session, request.donation_id)
    return envelope(
        f"Volunteer request {response_in.status} successfully",
        {"request": request, "donation": donation},
    )


@router.get("/donations/assigned", response_model=List[Donation])
def list_assigned_donations(
    session: SessionDep,
    current: dict = Depends(require_action(Action.VIEW_ASSIGNED)),
    status: Optional[DonationStatus] = None,
):
    return lifecycle.list_assigned(session, current["user"], status)


@router.put("/donations/{donation_id}/status")
def update_donation_status(
    donation_id: int,
    update: StatusUpdate,
    session: SessionDep,
    current: dict = Depends(require_action(Action.COMPLETE_DONATION)),
):
    donation = lifecycle.change_status(
        session, donation_id, update.status, current["user"], Actor.VOLUNTEER
    )
    return envelope("Donation marked as completed successfully", donation)
