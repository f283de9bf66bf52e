from pydantic import BaseModel, EmailStr, ConfigDict
from typing import Optional
from intranet.models.user import UserRole
from datetime import datetime

class UserBase(BaseModel):
    emp_id: str
    email: EmailStr
    role: UserRole
    first_name: str
    last_name: Optional[str] = None

class UserResponse(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    reporting_manager_id: Optional[int] = None
    is_active: bool
    created_at: Optional[datetime] = None

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class Token(BaseModel):
    access_token: str
    token_type: str
    user: Optional[dict] = None

class TokenData(BaseModel):
    email: Optional[str] = None
    role: Optional[str] = None
