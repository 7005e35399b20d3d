from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class InsertResult:
    id: str
    inserted: bool


@dataclass
class UserRow:
    id: str
    provider_id: str
    provider: str
    name: str | None
    email: str | None
    language: str | None
    first_login: datetime | None
    last_login: datetime | None


@dataclass
class QuotaRow:
    user_id: str
    request_class: str
    window_start_time: int
    request_count: int
