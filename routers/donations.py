from typing import List, Optional

from fastapi import APIRouter, Depends, status

import lifecycle
from db import SessionDep
from models import Donation, DonationCategory
from permissions import Action
from schemas import DonationCreate, DonationUpdate, envelope
from .auth import CurrentUserRoleDep, require_action

router = APIRouter(tags=["donations"])


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_donation(
    donation_in: DonationCreate,
    session: SessionDep,
    current: dict = Depends(require_action(Action.CREATE_DONATION)),
):
    """
    List a new donation. It starts out available.
    """
    donation = lifecycle.create_donation(session, current["user"], donation_in)
    return envelope("Donation created successfully", donation)


@router.get("/mine", response_model=List[Donation])
def list_my_donations(
    session: SessionDep,
    current: dict = Depends(require_action(Action.VIEW_OWN_DONATIONS)),
):
    """
    The donor's donations, available first, newest first within a status.
    """
    return lifecycle.list_donor_donations(session, current["user"])


@router.get("/available", response_model=List[Donation])
def list_available_donations(
    session: SessionDep,
    current: dict = Depends(require_action(Action.BROWSE_AVAILABLE)),
    category: Optional[DonationCategory] = None,
):
    """
    Unclaimed donations. Expired ones are swept out before the query runs.
    """
    return lifecycle.list_available(session, category)


@router.get("/{donation_id}", response_model=Donation)
def get_donation(donation_id: int, session: SessionDep, current: CurrentUserRoleDep):
    return lifecycle.get_visible_donation(session, donation_id, current["user"], current["role"])


@router.put("/{donation_id}")
def update_donation(
    donation_id: int,
    update: DonationUpdate,
    session: SessionDep,
    current: dict = Depends(require_action(Action.EDIT_DONATION)),
):
    donation = lifecycle.update_donation(session, donation_id, current["user"], update)
    return envelope("Donation updated successfully", donation)


@router.delete("/{donation_id}")
def delete_donation(
    donation_id: int,
    session: SessionDep,
    current: dict = Depends(require_action(Action.DELETE_DONATION)),
):
    lifecycle.delete_donation(session, donation_id, current["user"])
    return envelope("Donation deleted successfully")
