"""
Swap request lifecycle.

    pending  -> accepted | declined   (receiver)
    pending  -> cancelled             (either participant)
    accepted -> completed | cancelled (either participant)

declined, completed and cancelled are terminal.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping

from errors import IllegalTransitionError, InvalidRequestError, PermissionDeniedError


class SwapStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


RECEIVER = "receiver"
PARTICIPANT = "participant"

# (from, to) -> who may perform the move
TRANSITIONS = {
    (SwapStatus.PENDING, SwapStatus.ACCEPTED): RECEIVER,
    (SwapStatus.PENDING, SwapStatus.DECLINED): RECEIVER,
    (SwapStatus.PENDING, SwapStatus.CANCELLED): PARTICIPANT,
    (SwapStatus.ACCEPTED, SwapStatus.COMPLETED): PARTICIPANT,
    (SwapStatus.ACCEPTED, SwapStatus.CANCELLED): PARTICIPANT,
}

TERMINAL = {SwapStatus.DECLINED, SwapStatus.COMPLETED, SwapStatus.CANCELLED}


def validate_new_request(requester_id: str, receiver_id: str) -> None:
    if not requester_id or not receiver_id:
        raise InvalidRequestError("Requester and receiver are required")
    if requester_id == receiver_id:
        raise InvalidRequestError("You cannot request to swap a skill with yourself")


def duplicate_filter(requester_id: str, receiver_id: str, skill_id: str) -> Dict[str, Any]:
    """Query matching any prior request for the tuple, whatever its status."""
    return {"requester_id": requester_id, "receiver_id": receiver_id, "skill_id": skill_id}


def new_request_document(requester_id: str, receiver_id: str, skill_id: str, message, now: datetime) -> Dict[str, Any]:
    validate_new_request(requester_id, receiver_id)
    return {
        "requester_id": requester_id,
        "receiver_id": receiver_id,
        "skill_id": skill_id,
        "status": SwapStatus.PENDING.value,
        "message": message,
        "created_at": now,
        "updated_at": now,
    }


def is_participant(request: Mapping[str, Any], user_id: str) -> bool:
    return user_id in (request.get("requester_id"), request.get("receiver_id"))


def transition(request: Mapping[str, Any], actor_id: str, new_status: SwapStatus, now: datetime) -> Dict[str, Any]:
    """
    Validate a status change and return the `$set` update for it.

    Only status and updated_at change. Raises PermissionDeniedError when the
    actor may not perform the move, IllegalTransitionError when the move is
    not allowed from the current state.
    """
    current = SwapStatus(request["status"])
    new_status = SwapStatus(new_status)
    allowed = TRANSITIONS.get((current, new_status))
    if allowed is None:
        raise IllegalTransitionError(f"Cannot move a {current.value} request to {new_status.value}")
    if allowed == RECEIVER and actor_id != request.get("receiver_id"):
        raise PermissionDeniedError(f"Only the receiver may mark a request {new_status.value}")
    if allowed == PARTICIPANT and not is_participant(request, actor_id):
        raise PermissionDeniedError("Only a participant of this swap may change it")
    return {"status": new_status.value, "updated_at": now}
