from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import crud
from auth import get_current_user
from database import ROLE_ADMIN, get_db, Expense, Saving, User
from schemas import (
    EntryRemove,
    ExpenseCreate,
    ExpenseOut,
    GroupCreate,
    GroupDetail,
    GroupOut,
    MemberOut,
    SavingCreate,
    SavingOut,
)


router = APIRouter()


# groups
@router.post("/groups", status_code=status.HTTP_201_CREATED)
async def create_group(
    payload: GroupCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    group = crud.create_group(db, payload.name, payload.savings_goal, current_user)
    return {"group": GroupOut.model_validate(group)}


@router.get("/groups", response_model=list[GroupOut])
async def get_groups(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return crud.list_user_groups(db, current_user)


@router.get("/groups/{group_id}", response_model=GroupDetail)
async def get_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    membership = crud.require_active_member(db, group_id, current_user)
    group = crud.get_group_or_404(db, group_id)
    return GroupDetail(
        group=GroupOut.model_validate(group),
        role=membership.role,
        progress=crud.group_progress(group),
    )


@router.get("/groups/{group_id}/members", response_model=list[MemberOut])
async def get_group_members(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    crud.require_active_member(db, group_id, current_user)
    return [
        MemberOut(
            user_id=m.user_id, email=m.user.email, role=m.role, joined_at=m.joined_at
        )
        for m in crud.list_active_members(db, group_id)
    ]


@router.delete("/groups/{group_id}/members/{user_id}")
async def remove_group_member(
    group_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    membership = crud.require_active_member(db, group_id, current_user)
    if membership.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Only group admins can remove members")
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Admins cannot remove themselves")

    removed = crud.remove_member(db, group_id, user_id)
    return {"ok": True, "userId": removed.user_id, "removedAt": removed.removed_at}


@router.get("/groups/{group_id}/expenses", response_model=list[ExpenseOut])
async def get_group_expenses(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    crud.require_active_member(db, group_id, current_user)
    return [ExpenseOut.model_validate(e) for e in crud.list_entries(db, Expense, group_id)]


@router.get("/groups/{group_id}/savings", response_model=list[SavingOut])
async def get_group_savings(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    crud.require_active_member(db, group_id, current_user)
    return [SavingOut.model_validate(s) for s in crud.list_entries(db, Saving, group_id)]


# expenses and savings
@router.post("/add-expense")
async def add_expense(
    payload: ExpenseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    crud.require_active_member(db, payload.group_id, current_user)
    expense = crud.add_entry(
        db,
        Expense,
        payload.group_id,
        current_user,
        amount=payload.amount,
        note=payload.note or "",
        title=payload.title or None,
    )
    return {"expense": ExpenseOut.model_validate(expense)}


@router.post("/add-saving")
async def add_saving(
    payload: SavingCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    crud.require_active_member(db, payload.group_id, current_user)
    saving = crud.add_entry(
        db,
        Saving,
        payload.group_id,
        current_user,
        amount=payload.amount,
        note=payload.note or "",
    )
    return {"saving": SavingOut.model_validate(saving)}


@router.post("/remove-expense")
async def remove_expense(
    payload: EntryRemove,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    crud.require_active_member(db, payload.group_id, current_user)
    deleted = crud.remove_entry(db, Expense, payload.id, payload.group_id)
    return {"ok": True, "deleted": ExpenseOut.model_validate(deleted)}


@router.post("/remove-saving")
async def remove_saving(
    payload: EntryRemove,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    crud.require_active_member(db, payload.group_id, current_user)
    deleted = crud.remove_entry(db, Saving, payload.id, payload.group_id)
    return {"ok": True, "deleted": SavingOut.model_validate(deleted)}
