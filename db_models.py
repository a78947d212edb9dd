import re
from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, EmailStr, field_validator, model_validator

MAX_PHONE_DIGITS = 15


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(BaseModel):
    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: Optional[datetime] = None
    deletedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence is LinkPrecedence.PRIMARY

    @property
    def age_key(self):
        """Sort key for "older first": creation time, then id."""
        return (self.createdAt, self.id)

    @model_validator(mode="after")
    def _check_link(self):
        if self.is_primary and self.linkedId is not None:
            raise ValueError(f"primary contact {self.id} must not have a linkedId")
        if not self.is_primary and self.linkedId is None:
            raise ValueError(f"secondary contact {self.id} must have a linkedId")
        return self


class IdentifyRequest(BaseModel):
    email: Optional[EmailStr] = None
    phoneNumber: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("email must be a string")
        value = value.strip().lower()
        return value or None

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def normalize_phone(cls, value):
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValueError("phoneNumber must be a string or an integer")
        if isinstance(value, int):
            if value < 0:
                raise ValueError("phoneNumber must not be negative")
            value = str(value)
        if not isinstance(value, str):
            raise ValueError("phoneNumber must be a string or an integer")
        if not value.strip():
            return None
        digits = re.sub(r"\D", "", value)
        if not digits:
            raise ValueError("phoneNumber must contain digits")
        if len(digits) > MAX_PHONE_DIGITS:
            raise ValueError(f"phoneNumber must have at most {MAX_PHONE_DIGITS} digits")
        return digits

    @model_validator(mode="after")
    def require_email_or_phone(self):
        if self.email is None and self.phoneNumber is None:
            raise ValueError("Either email or phoneNumber must be provided")
        return self


class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class IdentifyResponse(BaseModel):
    contact: ContactResponse
