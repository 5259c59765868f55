from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Portal roles carried in identity tokens.

    RECEPTIONIST is a delegated sub-role acting for a customer (clinic).
    """

    ADMIN = "admin"
    CUSTOMER = "customer"
    EMPLOYEE = "employee"
    RECEPTIONIST = "receptionist"


def parse_role(value: object) -> Role:
    """Parse a raw role claim; raises ValueError for anything outside the enum."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        raise ValueError(f"role must be a string, got {type(value).__name__}")
    return Role(value.strip().lower())


def ensure_exhaustive(table: dict, name: str) -> None:
    """Fail loudly when a role decision table does not cover every Role."""
    missing = [role.value for role in Role if role not in table]
    if missing:
        raise RuntimeError(f"{name} has no decision for roles: {', '.join(missing)}")
