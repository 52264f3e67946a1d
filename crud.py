"""
Database operations shared by the routers and the scheduler.

Group aggregates (``savings_curr`` for savings, ``savings_goal`` for
expenses) are adjusted with a single ``UPDATE ... SET col = col + x`` in
the same transaction as the row insert or delete, so concurrent requests
never overwrite each other's totals.
"""

import logging
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta
from fastapi import HTTPException
from sqlalchemy import case, delete, update
from sqlalchemy.orm import Session

from config import get_settings
from database import (
    ROLE_ADMIN,
    Expense,
    Group,
    GroupMember,
    Invite,
    Saving,
    User,
)

logger = logging.getLogger(__name__)

# Which group column each ledger entry type rolls up into.
AGGREGATE_COLUMNS = {
    Expense: Group.savings_goal,
    Saving: Group.savings_curr,
}


def get_membership(
    db: Session, group_id: int, user_id: int, active_only: bool = True
) -> Optional[GroupMember]:
    query = db.query(GroupMember).filter(
        GroupMember.group_id == group_id, GroupMember.user_id == user_id
    )
    if active_only:
        query = query.filter(GroupMember.removed_at.is_(None))
    return query.first()


def require_active_member(db: Session, group_id: int, user: User) -> GroupMember:
    membership = get_membership(db, group_id, user.id)
    if membership is None:
        raise HTTPException(
            status_code=403, detail="You are not a member of this group"
        )
    return membership


def get_group_or_404(db: Session, group_id: int) -> Group:
    group = db.query(Group).filter(Group.id == group_id).first()
    if group is None:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


def create_group(db: Session, name: str, savings_goal: float, creator: User) -> Group:
    group = Group(name=name, savings_goal=savings_goal, savings_curr=0.0)
    db.add(group)
    db.flush()
    db.add(GroupMember(group_id=group.id, user_id=creator.id, role=ROLE_ADMIN))
    db.commit()
    db.refresh(group)
    logger.info("Created group", extra={"group_id": group.id, "user_id": creator.id})
    return group


def list_user_groups(db: Session, user: User) -> list[Group]:
    return (
        db.query(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .filter(GroupMember.user_id == user.id, GroupMember.removed_at.is_(None))
        .order_by(Group.created_at, Group.id)
        .all()
    )


def list_active_members(db: Session, group_id: int) -> list[GroupMember]:
    return (
        db.query(GroupMember)
        .filter(GroupMember.group_id == group_id, GroupMember.removed_at.is_(None))
        .order_by(GroupMember.joined_at, GroupMember.id)
        .all()
    )


def remove_member(db: Session, group_id: int, user_id: int) -> GroupMember:
    membership = get_membership(db, group_id, user_id)
    if membership is None:
        raise HTTPException(status_code=404, detail="Member not found")
    membership.removed_at = datetime.utcnow()
    db.commit()
    db.refresh(membership)
    logger.info("Removed member", extra={"group_id": group_id, "user_id": user_id})
    return membership


def group_progress(group: Group) -> float:
    if not group.savings_goal:
        return 0.0
    return round(group.savings_curr / group.savings_goal * 100, 2)


def _increment(model, group_id: int, amount: float):
    column = AGGREGATE_COLUMNS[model]
    return (
        update(Group)
        .where(Group.id == group_id)
        .values({column.key: column + amount})
    )


def _decrement(model, group_id: int, amount: float):
    # Totals never go below zero.
    column = AGGREGATE_COLUMNS[model]
    return (
        update(Group)
        .where(Group.id == group_id)
        .values({column.key: case((column - amount < 0, 0.0), else_=column - amount)})
    )


def add_entry(db: Session, model, group_id: int, user: User, **fields):
    """Insert an Expense or Saving and roll its amount into the group."""
    entry = model(group_id=group_id, user_id=user.id, **fields)
    db.add(entry)
    db.execute(_increment(model, group_id, entry.amount))
    db.commit()
    db.refresh(entry)
    return entry


def remove_entry(db: Session, model, entry_id: int, group_id: int):
    """Delete an Expense or Saving and take its amount back out of the group.

    Only the request whose DELETE actually removes the row adjusts the
    total; a concurrent removal of the same row gets a 404.
    """
    not_found = HTTPException(status_code=404, detail=f"{model.__name__} not found")
    entry = (
        db.query(model)
        .filter(model.id == entry_id, model.group_id == group_id)
        .first()
    )
    if entry is None:
        raise not_found
    # The row is gone after commit, so keep what the caller echoes back.
    deleted = {column.key: getattr(entry, column.key) for column in model.__table__.columns}
    deleted["user_email"] = entry.user_email

    result = db.execute(
        delete(model)
        .where(model.id == entry_id, model.group_id == group_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise not_found

    adjusted = db.execute(_decrement(model, group_id, deleted["amount"]))
    if adjusted.rowcount == 0:
        logger.warning(
            "Group missing while adjusting totals", extra={"group_id": group_id}
        )
    db.commit()
    return deleted


def list_entries(db: Session, model, group_id: int):
    return (
        db.query(model)
        .filter(model.group_id == group_id)
        .order_by(model.created_at.desc(), model.id.desc())
        .all()
    )


def invite_expires_at(invite: Invite) -> datetime:
    return invite.created_at + relativedelta(days=+get_settings().invite_ttl_days)


def is_invite_expired(invite: Invite, now: Optional[datetime] = None) -> bool:
    # Accepted invites are kept by the purge job, so they stay readable.
    if invite.accepted:
        return False
    now = now or datetime.utcnow()
    return now >= invite_expires_at(invite)


def get_live_invite(db: Session, invite_id: str) -> Optional[Invite]:
    invite = db.query(Invite).filter(Invite.id == invite_id).first()
    if invite is None or is_invite_expired(invite):
        return None
    return invite


def purge_expired_invites(db: Session, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    cutoff = now - relativedelta(days=+get_settings().invite_ttl_days)
    count = (
        db.query(Invite)
        .filter(Invite.accepted.is_(False), Invite.created_at <= cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return count
