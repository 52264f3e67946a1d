"""
Invite endpoints: send an invite by email, look one up for the landing
page, and accept it as the signed-in invitee.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import crud
from auth import get_current_user, resolve_user
from database import ROLE_MEMBER, get_db, GroupMember, Invite, User
from mailer import invite_url, send_invite_email
from schemas import InviteAccept, InviteCreate, InviteOut, InvitePublic

logger = logging.getLogger(__name__)

invites_router = APIRouter()

ALREADY_MEMBER = "You are already a member of this group."


def deliver_invite_email(to_email: str, invite_id: str) -> None:
    """Send the invitation after the response; SMTP blocks, so this runs in
    the threadpool rather than on the event loop."""
    if not send_invite_email(to_email, invite_url(invite_id)):
        logger.warning("Invite email not delivered", extra={"invite_id": invite_id})


@invites_router.post("/send-invite")
async def send_invite(
    payload: InviteCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    crud.get_group_or_404(db, payload.group_id)
    crud.require_active_member(db, payload.group_id, current_user)

    invite = Invite(
        invited_email=payload.email,
        group_id=payload.group_id,
        inviter_id=current_user.id,
        accepted=False,
    )
    db.add(invite)
    db.commit()
    db.refresh(invite)
    logger.info(
        "Created invite",
        extra={"invite_id": invite.id, "group_id": invite.group_id},
    )

    # Best effort: the invite stands even if the email never goes out.
    background_tasks.add_task(deliver_invite_email, invite.invited_email, invite.id)

    return {"invite": InviteOut.model_validate(invite)}


@invites_router.get("/get-invite", response_model=InvitePublic)
async def get_invite(
    invite_id: str = Query(alias="inviteId", min_length=1),
    db: Session = Depends(get_db),
):
    invite = crud.get_live_invite(db, invite_id)
    if invite is None:
        raise HTTPException(status_code=404, detail="Invite not found")
    return InvitePublic(
        id=invite.id, invited_email=invite.invited_email, accepted=invite.accepted
    )


def _mark_accepted(db: Session, invite_id: str) -> None:
    try:
        db.query(Invite).filter(Invite.id == invite_id).update({"accepted": True})
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        # Membership already exists; the caller still gets success.
        logger.error(
            "Failed to mark invite accepted", exc_info=True, extra={"invite_id": invite_id}
        )


@invites_router.post("/accept-invite")
async def accept_invite(payload: InviteAccept, db: Session = Depends(get_db)):
    if not payload.access_token:
        raise HTTPException(status_code=401, detail="accessToken required")
    user = resolve_user(payload.access_token, db)

    invite: Optional[Invite] = crud.get_live_invite(db, payload.invite_id)
    if invite is None:
        raise HTTPException(status_code=404, detail="Invite not found or expired")
    group_id = invite.group_id

    if invite.invited_email.lower() != (user.email or "").lower():
        raise HTTPException(
            status_code=403,
            detail="This invite was sent to a different email. "
            "Please sign in with the invited email.",
        )

    previous = crud.get_membership(db, group_id, user.id, active_only=False)
    if previous is not None:
        if previous.removed_at is not None:
            raise HTTPException(
                status_code=403,
                detail="You were removed from this group and cannot rejoin using this link.",
            )
        return {"ok": True, "message": ALREADY_MEMBER, "groupId": group_id}

    db.add(
        GroupMember(group_id=group_id, user_id=user.id, role=ROLE_MEMBER, removed_at=None)
    )
    try:
        db.commit()
    except IntegrityError:
        # A concurrent acceptance inserted the row first.
        db.rollback()
        logger.info(
            "Concurrent invite acceptance", extra={"invite_id": payload.invite_id}
        )
        return {"ok": True, "message": ALREADY_MEMBER, "groupId": group_id}

    logger.info(
        "Invite accepted",
        extra={"invite_id": payload.invite_id, "group_id": group_id, "user_id": user.id},
    )
    _mark_accepted(db, payload.invite_id)
    return {"ok": True, "groupId": group_id}
