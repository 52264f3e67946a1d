from pydantic import AliasChoices, BaseModel, EmailStr, Field, constr
from datetime import datetime
from typing import Optional


class UserBase(BaseModel):
    email: EmailStr


class UserCreate(UserBase):
    password: constr(min_length=6)


class UserLogin(UserBase):
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class GroupCreate(BaseModel):
    name: constr(min_length=1, max_length=100)
    savings_goal: float = Field(
        default=0.0, ge=0, allow_inf_nan=False, alias="savingsGoal"
    )

    class Config:
        populate_by_name = True


class GroupOut(BaseModel):
    id: int
    name: str
    savings_goal: float
    savings_curr: float
    created_at: datetime

    class Config:
        from_attributes = True


class GroupDetail(BaseModel):
    group: GroupOut
    role: str
    progress: float


class MemberOut(BaseModel):
    user_id: int
    email: str
    role: str
    joined_at: datetime


class ExpenseCreate(BaseModel):
    group_id: int = Field(alias="groupId")
    amount: float = Field(gt=0, allow_inf_nan=False)
    note: Optional[str] = None
    title: Optional[str] = None

    class Config:
        populate_by_name = True


class SavingCreate(BaseModel):
    group_id: int = Field(alias="groupId")
    amount: float = Field(gt=0, allow_inf_nan=False)
    note: Optional[str] = None

    class Config:
        populate_by_name = True


class EntryRemove(BaseModel):
    """Body of remove-expense / remove-saving; the row id may be sent as
    ``id`` or under its entity-specific name."""

    id: int = Field(validation_alias=AliasChoices("id", "expenseId", "savingId"))
    group_id: int = Field(validation_alias=AliasChoices("groupId", "group_id"))


class ExpenseOut(BaseModel):
    id: int
    group_id: int
    user_id: int
    user_email: Optional[str] = None
    amount: float
    title: Optional[str] = None
    note: str
    created_at: datetime

    class Config:
        from_attributes = True


class SavingOut(BaseModel):
    id: int
    group_id: int
    user_id: int
    user_email: Optional[str] = None
    amount: float
    note: str
    created_at: datetime

    class Config:
        from_attributes = True


class InviteCreate(BaseModel):
    email: EmailStr
    group_id: int = Field(alias="groupId")

    class Config:
        populate_by_name = True


class InviteOut(BaseModel):
    id: str
    invited_email: str
    group_id: int
    inviter_id: int
    accepted: bool
    created_at: datetime

    class Config:
        from_attributes = True


class InvitePublic(BaseModel):
    id: str
    invited_email: str
    accepted: bool


class InviteAccept(BaseModel):
    invite_id: str = Field(alias="inviteId", min_length=1)
    access_token: Optional[str] = Field(default=None, alias="accessToken")
