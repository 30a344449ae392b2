from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NewUser:
    """Row values for a user insert; the store assigns id and created_at."""

    email: str
    password_hash: str
    ssn_encrypted: str
    ssn_last4: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: str
    address: str
    city: str
    state: str
    zip_code: str


@dataclass
class User:
    id: str
    email: str
    password_hash: str
    ssn_encrypted: str
    ssn_last4: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: str
    address: str
    city: str
    state: str
    zip_code: str
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_new(cls, user_id: str, record: NewUser) -> "User":
        return cls(id=user_id, created_at=utcnow(), **vars(record))

    def public(self) -> "PublicUser":
        return PublicUser(
            id=self.id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            phone_number=self.phone_number,
            date_of_birth=self.date_of_birth,
            address=self.address,
            city=self.city,
            state=self.state,
            zip_code=self.zip_code,
            ssn_last4=self.ssn_last4,
            ssn_masked=f"***-**-{self.ssn_last4}",
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class PublicUser:
    """User view safe to return to clients: no password hash, no SSN blob."""

    id: str
    email: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: str
    address: str
    city: str
    state: str
    zip_code: str
    ssn_last4: str
    ssn_masked: str
    created_at: datetime


@dataclass
class Session:
    id: str
    user_id: str
    token: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def new(
        cls,
        user_id: str,
        token: str,
        ttl: timedelta = timedelta(days=7),
        *,
        now: Optional[datetime] = None,
    ) -> "Session":
        now = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=token,
            created_at=now,
            expires_at=now + ttl,
        )
