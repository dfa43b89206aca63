from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    firebase_uid: str = Field(..., validation_alias="external_id")
    email: str
    name: str = Field(..., validation_alias="display_name")


class FirebaseLoginResponse(BaseModel):
    success: bool
    new_user: bool
    user: UserSummary


class RegisterRequest(BaseModel):
    firebase_uid: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=20)
    email: EmailStr


class RegisterResponse(BaseModel):
    success: bool
    message: str
    user: UserSummary
