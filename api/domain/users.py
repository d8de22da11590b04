"""
User record shape and validation rules.

Payloads use the camelCase keys of the JSON wire/file format (``firstName``,
``phoneNumber``...). Validation is pure: it never touches storage.
Every check runs and all issues are reported together.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from email_validator import EmailNotValidError, validate_email

ROLES = ("admin", "editor", "viewer")

# Shape only; 2024-02-30 is accepted.
DATE_PATTERN = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})")
TLD_PATTERN = re.compile(r"[a-z]{2,}|xn--[a-z0-9-]+", re.IGNORECASE)

DRAFT_FIELDS = ("firstName", "lastName", "email", "phoneNumber", "birthDate", "role")


class UserDirectoryError(Exception):
    """Base exception for the user directory."""


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str

    def to_dict(self) -> dict:
        return {"path": self.path, "message": self.message}


class ValidationError(UserDirectoryError):
    """Raised when a candidate payload breaks one or more rules."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = list(issues)
        summary = "; ".join(f"{i.path or '<root>'}: {i.message}" for i in self.issues)
        super().__init__(summary or "Validation failed")

    @property
    def paths(self) -> list[str]:
        return [issue.path for issue in self.issues]

    def to_dict(self) -> dict:
        return {"detail": "Validation failed", "issues": [i.to_dict() for i in self.issues]}


@dataclass(frozen=True)
class UserDraft:
    """A user payload without an assigned id."""

    first_name: str
    last_name: str
    email: str
    role: str
    phone_number: Optional[str] = None
    birth_date: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "birthDate": self.birth_date,
            "role": self.role,
        }
        return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class User:
    """A persisted user record."""

    id: int
    first_name: str
    last_name: str
    email: str
    role: str
    phone_number: Optional[str] = None
    birth_date: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_draft(self) -> UserDraft:
        return UserDraft(
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            role=self.role,
            phone_number=self.phone_number,
            birth_date=self.birth_date,
        )

    def to_dict(self) -> dict:
        return {"id": self.id, **self.to_draft().to_dict()}


# -------------------------- field checks --------------------------
def _check_text(data: Mapping[str, Any], key: str, issues: list[ValidationIssue], *, required: bool, min_length: int = 0) -> None:
    value = data.get(key)
    if value is None:
        if required:
            issues.append(ValidationIssue(key, "Required"))
        return
    if not isinstance(value, str):
        issues.append(ValidationIssue(key, "Expected string"))
        return
    if len(value) < min_length:
        issues.append(ValidationIssue(key, f"String must contain at least {min_length} character(s)"))


def _is_valid_email(value: str) -> bool:
    """Syntax only; no DNS lookups. The top-level domain must be at least two letters."""
    try:
        validated = validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    tld = validated.ascii_domain.rsplit(".", 1)[-1]
    return bool(TLD_PATTERN.fullmatch(tld))


def _check_email(data: Mapping[str, Any], issues: list[ValidationIssue], *, required: bool) -> None:
    before = len(issues)
    _check_text(data, "email", issues, required=required)
    value = data.get("email")
    if len(issues) == before and isinstance(value, str) and not _is_valid_email(value):
        issues.append(ValidationIssue("email", "Invalid email"))


def _check_birth_date(data: Mapping[str, Any], issues: list[ValidationIssue]) -> None:
    before = len(issues)
    _check_text(data, "birthDate", issues, required=False)
    value = data.get("birthDate")
    if len(issues) == before and isinstance(value, str) and not DATE_PATTERN.fullmatch(value):
        issues.append(ValidationIssue("birthDate", "Expected YYYY-MM-DD"))


def _check_role(data: Mapping[str, Any], issues: list[ValidationIssue], *, required: bool) -> None:
    value = data.get("role")
    if value is None:
        if required:
            issues.append(ValidationIssue("role", "Required"))
        return
    if value not in ROLES:
        issues.append(ValidationIssue("role", f"Invalid role, expected one of {', '.join(ROLES)}"))


def _check_id(data: Mapping[str, Any], issues: list[ValidationIssue]) -> None:
    value = data.get("id")
    if value is None:
        issues.append(ValidationIssue("id", "Required"))
    elif isinstance(value, bool) or not isinstance(value, int):
        issues.append(ValidationIssue("id", "Expected integer"))
    elif value <= 0:
        issues.append(ValidationIssue("id", "Number must be greater than 0"))


def _draft_issues(data: Mapping[str, Any]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    _check_text(data, "firstName", issues, required=True, min_length=1)
    _check_text(data, "lastName", issues, required=True, min_length=1)
    _check_email(data, issues, required=True)
    _check_text(data, "phoneNumber", issues, required=False)
    _check_birth_date(data, issues)
    _check_role(data, issues, required=True)
    return issues


def _role_issues(data: Mapping[str, Any]) -> list[ValidationIssue]:
    """Rules whose applicability depends on the role."""
    role = data.get("role")
    issues: list[ValidationIssue] = []
    if role == "admin":
        if not data.get("phoneNumber"):
            issues.append(ValidationIssue("phoneNumber", "Phone number is required for admins"))
        if not data.get("birthDate"):
            issues.append(ValidationIssue("birthDate", "Birth date is required for admins"))
    elif role == "editor" and not data.get("phoneNumber"):
        issues.append(ValidationIssue("phoneNumber", "Phone number is required for editors"))
    return issues


def _ensure_mapping(candidate: Any) -> Mapping[str, Any]:
    if not isinstance(candidate, Mapping):
        raise ValidationError([ValidationIssue("", "Expected object")])
    return candidate


def _build_draft(data: Mapping[str, Any]) -> UserDraft:
    return UserDraft(
        first_name=data["firstName"],
        last_name=data["lastName"],
        email=data["email"],
        role=data["role"],
        phone_number=data.get("phoneNumber"),
        birth_date=data.get("birthDate"),
    )


# -------------------------- public API --------------------------
def validate_user(candidate: Any) -> User:
    """Check a full record (id included). Role-conditional rules do not apply."""
    data = _ensure_mapping(candidate)
    issues: list[ValidationIssue] = []
    _check_id(data, issues)
    issues.extend(_draft_issues(data))
    if issues:
        raise ValidationError(issues)
    draft = _build_draft(data)
    return User(id=data["id"], **vars(draft))


def validate_draft_for_create(candidate: Any) -> UserDraft:
    """Check a create/replace payload, including the role-conditional rules."""
    data = _ensure_mapping(candidate)
    issues = _draft_issues(data)
    issues.extend(_role_issues(data))
    if issues:
        raise ValidationError(issues)
    return _build_draft(data)


def validate_patch(candidate: Any) -> dict:
    """
    Check a partial payload for the inline patch. Only keys that are present
    are checked; optional fields may be cleared with null. Unknown keys and
    ``id`` are dropped.
    """
    data = _ensure_mapping(candidate)
    issues: list[ValidationIssue] = []
    if "firstName" in data:
        _check_text(data, "firstName", issues, required=True, min_length=1)
    if "lastName" in data:
        _check_text(data, "lastName", issues, required=True, min_length=1)
    if "email" in data:
        _check_email(data, issues, required=True)
    if "phoneNumber" in data:
        _check_text(data, "phoneNumber", issues, required=False)
    if "birthDate" in data:
        _check_birth_date(data, issues)
    if "role" in data:
        _check_role(data, issues, required=True)
    if issues:
        raise ValidationError(issues)
    return {key: data[key] for key in DRAFT_FIELDS if key in data}
