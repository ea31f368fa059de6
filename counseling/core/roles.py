"""Caller identity passed explicitly into every route."""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    STUDENT = 'student'
    COUNSELOR = 'counselor'
    ADMIN = 'admin'


@dataclass(frozen=True)
class Caller:
    """The authenticated user behind a request.

    Built from the bearer token claims, so it never touches the database.
    """

    id: int
    role: Role
    name: str
