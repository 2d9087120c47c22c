"""API schemas: response shapes for users and verifications."""

import uuid
from datetime import datetime

from pydantic import BaseModel


class VerificationSummary(BaseModel):
    """Count of addresses per verdict in one bulk verification."""
    deliverable: int = 0
    risky: int = 0
    undeliverable: int = 0
    unknown: int = 0


class Verification(BaseModel):
    """A stored bulk verification record."""
    id: str
    summary: VerificationSummary
    created_at: datetime
    updated_at: datetime


class UserResponse(BaseModel):
    """User document returned by the user endpoints."""
    id: uuid.UUID
    auth0_id: str
    credits: int
    verifications: list[Verification]
    created_at: datetime


class ListUsersResponse(BaseModel):
    """All users, unpaginated."""
    users: list[UserResponse]


class BulkVerifyResponse(BaseModel):
    """Result of a bulk verification, reports in input order."""
    name: str
    report: list
