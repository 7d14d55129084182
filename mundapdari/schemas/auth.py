from pydantic import BaseModel

from mundapdari.schemas.common import Name, Phone, Role


class RegisterRequest(BaseModel):
    name: Name
    phone: Phone
    role: Role
    invite_code: str | None = None


class LoginRequest(BaseModel):
    phone: Phone


class InviteRequest(BaseModel):
    """Inviter details (ignored when authenticated) and an optional invitee
    phone that receives the invitation link by Kakao message.
    """

    inviter_phone: Phone | None = None
    inviter_name: Name | None = None
    inviter_role: Role | None = None
    invitee_phone: Phone | None = None


class AcceptInvitationRequest(BaseModel):
    invitation_token: str
    invitee_phone: Phone
    invitee_name: Name
    invitee_role: Role


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class ProfileUpdate(BaseModel):
    name: Name


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
