from typing import List, Optional

from fastapi import APIRouter, Depends, status

import ledger
import lifecycle
from db import SessionDep
from lifecycle import Actor
from models import Donation, DonationCategory, DonationStatus
from permissions import Action
from schemas import StatusUpdate, VolunteerBatchCreate, VolunteerRequestCreate, envelope
from .auth import require_action

router = APIRouter(tags=["organization"])


@router.get("/donations/available", response_model=List[Donation])
def list_available_donations(
    session: SessionDep,
    current: dict = Depends(require_action(Action.CLAIM_DONATION)),
    category: Optional[DonationCategory] = None,
):
    return lifecycle.list_available(session, category)


@router.post("/donations/{donation_id}/claim")
def claim_donation(
    donation_id: int,
    session: SessionDep,
    current: dict = Depends(require_action(Action.CLAIM_DONATION)),
):
    """
    Claim an available donation and open a conversation with its donor.
    """
    donation, conversation = lifecycle.claim_donation(session, donation_id, current["user"])
    return envelope(
        "Donation claimed successfully",
        {"donation": donation, "conversation": conversation},
    )


@router.get("/donations/claimed")
def list_claimed_donations(
    session: SessionDep,
    current: dict = Depends(require_action(Action.VIEW_CLAIMED)),
    status: Optional[DonationStatus] = None,
):
    """
    Donations claimed by this organization, each with its volunteer requests.
    """
    donations = lifecycle.list_claimed(session, current["user"], status)
    return [
        {
            **donation.model_dump(),
            "volunteer_requests": ledger.list_for_donation(session, donation.id),
        }
        for donation in donations
    ]


@router.post("/donations/{donation_id}/request-volunteer", status_code=status.HTTP_201_CREATED)
def request_volunteer(
    donation_id: int,
    request_in: VolunteerRequestCreate,
    session: SessionDep,
    current: dict = Depends(require_action(Action.REQUEST_VOLUNTEERS)),
):
    request = ledger.request_volunteer(
        session, donation_id, current["user"], request_in.volunteer_id, request_in.message
    )
    return envelope("Volunteer request sent successfully", request)


@router.post("/donations/{donation_id}/request-volunteers", status_code=status.HTTP_201_CREATED)
def request_volunteers(
    donation_id: int,
    batch: VolunteerBatchCreate,
    session: SessionDep,
    current: dict = Depends(require_action(Action.REQUEST_VOLUNTEERS)),
):
    """
    Ask the next ``volunteer_count`` volunteers who were not asked yet.
    """
    requests = ledger.request_volunteers(
        session, donation_id, current["user"], batch.volunteer_count, batch.message
    )
    donation = lifecycle.get_donation(session, donation_id)
    return envelope(
        f"{len(requests)} volunteer requests sent successfully",
        {"requests": requests, "volunteer_count": donation.volunteer_count},
    )


@router.put("/donations/{donation_id}/status")
def update_donation_status(
    donation_id: int,
    update: StatusUpdate,
    session: SessionDep,
    current: dict = Depends(require_action(Action.CHANGE_CLAIM_STATUS)),
):
    """
    Only cancellation is driven by the organization; it releases the
    donation back to available.
    """
    donation = lifecycle.change_status(
        session, donation_id, update.status, current["user"], Actor.ORGANIZATION
    )
    return envelope("Donation status updated successfully", donation)
