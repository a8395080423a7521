from enum import Enum
from typing import Dict, FrozenSet, Tuple

from errors import AuthorizationError
from models import Role


class Action(str, Enum):
    CREATE_DONATION = "create_donation"
    VIEW_OWN_DONATIONS = "view_own_donations"
    EDIT_DONATION = "edit_donation"
    DELETE_DONATION = "delete_donation"
    BROWSE_AVAILABLE = "browse_available"
    CLAIM_DONATION = "claim_donation"
    VIEW_CLAIMED = "view_claimed"
    REQUEST_VOLUNTEERS = "request_volunteers"
    CHANGE_CLAIM_STATUS = "change_claim_status"
    VIEW_VOLUNTEER_REQUESTS = "view_volunteer_requests"
    RESPOND_TO_REQUEST = "respond_to_request"
    VIEW_ASSIGNED = "view_assigned"
    COMPLETE_DONATION = "complete_donation"
    MESSAGE = "message"


_ANYONE = frozenset(Role)
_DONORS = frozenset({Role.DONOR})
_ORGANIZATIONS = frozenset({Role.ORGANIZATION})
_VOLUNTEERS = frozenset({Role.VOLUNTEER})

POLICIES: Dict[Action, Tuple[FrozenSet[Role], str]] = {
    Action.CREATE_DONATION: (_DONORS, "Only donors can create donations"),
    Action.VIEW_OWN_DONATIONS: (_DONORS, "Only donors have their own donations"),
    Action.EDIT_DONATION: (_DONORS, "Only donors can edit donations"),
    Action.DELETE_DONATION: (_DONORS, "Only donors can delete donations"),
    Action.BROWSE_AVAILABLE: (_ANYONE, "Not allowed to browse donations"),
    Action.CLAIM_DONATION: (_ORGANIZATIONS, "Only organizations can claim donations"),
    Action.VIEW_CLAIMED: (_ORGANIZATIONS, "Only organizations can view claimed donations"),
    Action.REQUEST_VOLUNTEERS: (_ORGANIZATIONS, "Only organizations can request volunteers"),
    Action.CHANGE_CLAIM_STATUS: (_ORGANIZATIONS, "Only organizations can change a claim"),
    Action.VIEW_VOLUNTEER_REQUESTS: (_VOLUNTEERS, "Only volunteers receive volunteer requests"),
    Action.RESPOND_TO_REQUEST: (_VOLUNTEERS, "Only volunteers can respond to requests"),
    Action.VIEW_ASSIGNED: (_VOLUNTEERS, "Only volunteers have assigned donations"),
    Action.COMPLETE_DONATION: (_VOLUNTEERS, "Only volunteers can complete donations"),
    Action.MESSAGE: (_ANYONE, "Not allowed to use messaging"),
}


def authorize(role: Role, action: Action) -> None:
    """Raise AuthorizationError unless ``role`` may perform ``action``."""
    allowed, denial = POLICIES[action]
    if role not in allowed:
        raise AuthorizationError(denial)
