from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# Request body for registration and login. Fields are optional here so a
# missing value is answered with 400 by the handler rather than a 422.
class Credentials(BaseModel):
    email: str | None = None
    password: str | None = None


class RegisterResponse(BaseModel):
    success: bool = True
    message: str
    userId: int


class UserOut(BaseModel):
    id: int
    email: str

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    token: str
    user: UserOut


# Schema for creating a todo
class TodoCreate(BaseModel):
    title: str | None = None


# Schema for a partial todo update; unset and null fields are left alone
class TodoUpdate(BaseModel):
    title: str | None = None
    is_completed: bool | None = Field(default=None, alias="isCompleted")

    model_config = ConfigDict(populate_by_name=True)


# A todo as returned by create/update (camelCase on the wire)
class Todo(BaseModel):
    id: int
    title: str
    is_completed: bool = Field(alias="isCompleted")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# A todo as returned by the listing (snake_case on the wire)
class TodoListItem(BaseModel):
    id: int
    title: str
    is_completed: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TodoResponse(BaseModel):
    success: bool = True
    message: str
    todo: Todo


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    ok: bool
    db: bool
    message: str
