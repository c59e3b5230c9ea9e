"""
Caller identity as handed over by the upstream auth layer.
"""

from dataclasses import dataclass
from enum import Enum


class UserRole(str, Enum):
    """Role of the calling user."""
    CUSTOMER = "CUSTOMER"
    EMPLOYEE = "EMPLOYEE"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Caller:
    """Opaque identity of whoever triggered an operation."""
    user_id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_employee(self) -> bool:
        return self.role == UserRole.EMPLOYEE

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER
