from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class AdminUserOut(BaseModel):
    id: str
    email: str
    nom: Optional[str] = None
    prenom: Optional[str] = None
    role: str
    chef_quartier_id: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    user: AdminUserOut
    role: str
    redirect: str


class SessionResponse(BaseModel):
    user: AdminUserOut
    role: str
    redirect: str
