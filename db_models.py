from datetime import datetime, timezone
from enum import Enum
from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class ContactRecord(BaseModel):
    """One row of the Contact table."""

    id: int
    phoneNumber: Optional[str] = None
    email: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence = LinkPrecedence.PRIMARY
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None

    @field_validator("createdAt", "updatedAt", "deletedAt")
    @classmethod
    def assume_utc(cls, value):
        # CURRENT_TIMESTAMP defaults are naive UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == LinkPrecedence.PRIMARY

    @property
    def sort_key(self):
        return (self.createdAt, self.id)


class IdentityGroup(BaseModel):
    """A primary contact and every contact currently linked to it."""

    primary: ContactRecord
    secondaries: List[ContactRecord] = Field(default_factory=list)

    @property
    def members(self) -> List[ContactRecord]:
        return [self.primary] + self.secondaries


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    @field_validator("email", "phoneNumber", mode="before")
    @classmethod
    def blank_as_missing(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def phone_number_as_string(cls, value):
        # clients send phone numbers as JSON numbers too
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("email")
    @classmethod
    def email_well_formed(cls, value):
        # reject malformed addresses but keep the submitted string, matching is exact
        if value is not None:
            try:
                validate_email(value, check_deliverability=False)
            except EmailNotValidError as exc:
                raise ValueError(str(exc))
        return value

    @model_validator(mode="after")
    def require_email_or_phone(self):
        if not self.email and not self.phoneNumber:
            raise ValueError("At least one of email or phoneNumber must be provided")
        return self


class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]

class FinalResponse(BaseModel):
    contact: ContactResponse
