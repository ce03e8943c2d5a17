from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class WireModel(BaseModel):
    """JSON bodies use camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# Attestation Service payloads

class IssueTokenRequest(WireModel):
    context_hash: str = Field(alias="contextHash")
    signature: str
    consistency_score: float = Field(alias="consistencyScore", ge=0.0, le=1.0)
    public_key: str = Field(alias="publicKey")

class IssueTokenResponse(WireModel):
    token: Optional[str] = None
    consistency_score: float = Field(alias="consistencyScore", ge=0.0, le=1.0)

class EnrollmentRequest(WireModel):
    public_key: str = Field(alias="publicKey")
    owner_approval_token: str = Field(alias="ownerApprovalToken")

class EnrollmentResponse(WireModel):
    enrollment_token: str = Field(alias="enrollmentToken")
    enrollment_url: str = Field(alias="enrollmentUrl")

class RevokeDeviceRequest(WireModel):
    public_key: str = Field(alias="publicKey")

class VerifyTokenRequest(WireModel):
    token: str

class VerifyTokenResponse(WireModel):
    valid: bool


# Background service messages

class TokenPayload(WireModel):
    token: Optional[str] = None
    consistency_score: float = Field(alias="consistencyScore")
    expires_at: Optional[float] = Field(default=None, alias="expiresAt")

class VerifyContextRequest(WireModel):
    url: str

class VerifyContextResponse(WireModel):
    success: bool
    token: Optional[TokenPayload] = None
    error: Optional[str] = None
    failure_kind: Optional[str] = Field(default=None, alias="failureKind")

class NavigationChange(WireModel):
    context_id: str = Field(default="default", alias="contextId")
    url: str
    in_store: Optional[bool] = Field(default=None, alias="inStore")

class EnrollDeviceRequest(WireModel):
    owner_approval_token: str = Field(alias="ownerApprovalToken")

class RevokeConfirmation(WireModel):
    confirm: bool = False
