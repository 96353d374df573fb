from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

MembershipType = Literal["student", "staff"]
Role = Literal["user", "admin"]
BorrowingStatus = Literal["pending", "borrowed", "returned", "rejected"]


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


# ---------- Auth ----------
class LoginRequest(BaseModel):
    membership_id: str = Field(validation_alias=AliasChoices("membership_id", "user_id"))
    password: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


# ---------- Users ----------
class UserBase(BaseModel):
    name: str
    phone: str
    membership_id: str = Field(validation_alias=AliasChoices("membership_id", "user_id"))
    membership_type: MembershipType = "student"
    address: str = ""

    @field_validator("name", "phone", "membership_id")
    @classmethod
    def not_blank(cls, value: str) -> str:
        return _strip_required(value)


class UserCreate(UserBase):
    password: str = Field(min_length=6)


class AdminUserCreate(UserCreate):
    role: Role = "user"


class UserUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    membership_id: Optional[str] = None
    membership_type: Optional[MembershipType] = None
    address: Optional[str] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    id: str
    name: str
    phone: str
    membership_id: str
    membership_type: MembershipType
    address: str = ""
    role: Role
    join_date: Optional[datetime] = None
    is_active: bool = True
    borrowed_books: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("borrowed_books", mode="before")
    @classmethod
    def ids_to_str(cls, value):
        return [str(item) for item in value or []]


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ---------- Books ----------
class BookBase(BaseModel):
    title: str
    author: str
    isbn: str
    genre: str
    publication_year: int
    publisher: str = ""
    description: str = ""
    cover_image: Optional[str] = None
    pdf_file: Optional[str] = None

    @field_validator("title", "author", "isbn", "genre")
    @classmethod
    def not_blank(cls, value: str) -> str:
        return _strip_required(value)


class BookCreate(BookBase):
    total_copies: int = Field(default=1, ge=1)
    available_copies: Optional[int] = Field(default=None, ge=0)  # defaults to total_copies


class BookUpdate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    genre: Optional[str] = None
    publication_year: Optional[int] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    cover_image: Optional[str] = None
    pdf_file: Optional[str] = None
    total_copies: Optional[int] = Field(default=None, ge=1)


class BookResponse(BookBase):
    id: str
    total_copies: int
    available_copies: int
    is_available: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------- Borrowings ----------
class BorrowingCreate(BaseModel):
    book_id: str
    user_id: Optional[str] = None  # admins may request on a member's behalf
    due_date: Optional[datetime] = None
    notes: str = ""


class DueDateExtension(BaseModel):
    due_date: datetime


class UserSummary(BaseModel):
    id: str
    name: str
    phone: str
    membership_id: str


class BookSummary(BaseModel):
    id: str
    title: str
    author: str
    isbn: str
    cover_image: Optional[str] = None


class BorrowingResponse(BaseModel):
    id: str
    user_id: str
    book_id: str
    user: Optional[UserSummary] = None
    book: Optional[BookSummary] = None
    token_number: str
    borrow_date: Optional[datetime] = None
    due_date: datetime
    return_date: Optional[datetime] = None
    status: BorrowingStatus
    fine: float = 0
    notes: str = ""
    is_overdue: bool = False
    days_overdue: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------- Misc ----------
class MessageResponse(BaseModel):
    message: str


class UploadResponse(BaseModel):
    message: str
    filename: str
    url: str
