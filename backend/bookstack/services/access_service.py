# Overview: Access gate; decides whether a user may read a title right now.

"""
Access Gate

READ ONLY: never mutates entitlements; lapsed records are flipped by the
expiry sweeper, not here.

RULES (in order):
1. Staff roles bypass everything.
2. Restricted titles require the user's *current* plan to carry the
   restricted-access capability (checked live, not captured at grant).
3. The latest record for (user, title) must be ACTIVE with expires_at > now.
   No record, or only a checkout placeholder -> NEVER_GRANTED.
   A record that lapsed or was completed -> EXPIRED_NOT_RENEWED, so the
   client can offer a renewal instead of a dead end.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from flask import current_app

from ..collaborators import get_collaborators
from ..extensions import db
from ..models import Title, User
from ..validation import NotFoundError, StateConflict, UpstreamFailure
from . import entitlement_service
from .blob_service import BlobNotFound, StorageError
from bookstack.time_utils import to_utc_z, utcnow


REASON_PLAN_INSUFFICIENT = "PLAN_INSUFFICIENT"
REASON_NEVER_GRANTED = "NEVER_GRANTED"
REASON_EXPIRED_NOT_RENEWED = "EXPIRED_NOT_RENEWED"

_DENIAL_MESSAGES = {
    REASON_PLAN_INSUFFICIENT: "This title requires a membership plan with restricted-collection access",
    REASON_NEVER_GRANTED: "Add this title to your readlist to read it",
    REASON_EXPIRED_NOT_RENEWED: "Your access to this title has expired. Renew it from your readlist",
}


@dataclass(frozen=True)
class AccessDecision:
    authorized: bool
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "authorized": self.authorized,
            "reason": self.reason,
            "expires_at": to_utc_z(self.expires_at),
        }


class AccessDenied(StateConflict):
    status_code = 403
    code = "ACCESS_DENIED"


def check_access(user_id: int, title_id: int, now: datetime | None = None) -> AccessDecision:
    now = now or utcnow()

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    title = db.session.get(Title, title_id)
    if title is None:
        raise NotFoundError("Title not found")

    if user.is_staff:
        return AccessDecision(authorized=True)

    if title.is_restricted:
        plan = user.membership_plan
        if plan is None or not plan.can_access_restricted:
            return AccessDecision(authorized=False, reason=REASON_PLAN_INSUFFICIENT)

    record = entitlement_service.latest_for(user.id, title.id)
    if record is None or record.is_placeholder:
        return AccessDecision(authorized=False, reason=REASON_NEVER_GRANTED)
    if not record.is_live(now):
        return AccessDecision(
            authorized=False,
            reason=REASON_EXPIRED_NOT_RENEWED,
            expires_at=record.expires_at,
        )
    return AccessDecision(authorized=True, expires_at=record.expires_at)


def open_content(user_id: int, title_id: int, now: datetime | None = None) -> tuple[Iterator[bytes], str, int]:
    """
    Gate, then stream the title's content from the blob store.

    Returns (chunks, content_type, length).
    """
    decision = check_access(user_id, title_id, now)
    if not decision.authorized:
        raise AccessDenied(
            _DENIAL_MESSAGES[decision.reason],
            code=decision.reason,
            details=decision.to_dict(),
        )

    title = db.session.get(Title, title_id)
    if not title.content_key:
        raise NotFoundError("This title has no readable content")

    try:
        return get_collaborators().blob_store.get_stream(title.content_key)
    except BlobNotFound as e:
        raise NotFoundError("Title content not found") from e
    except StorageError as e:
        current_app.logger.exception("Blob store failed for title %s", title_id)
        raise UpstreamFailure("Content storage is unavailable") from e
