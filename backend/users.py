# Admin accounts, secondary users and password changes
from __future__ import annotations
import logging
import time

from fastapi import Depends

import config
from errors import (
    DuplicateEmailError,
    FormValidationError,
    InvalidCredentialsError,
    InvalidSchoolCodeError,
    NotFoundError,
    PermissionDeniedError,
    SecondaryUserLimitError,
    WeakPasswordError,
)
from schemas import (
    AdminUserOut,
    PasswordChangeIn,
    Permissions,
    RegisterIn,
    SecondaryUserCreate,
    SecondaryUserUpdate,
)
from security import check_password, hash_password
from store import Repository, get_repository
from validation import CodeValidator, get_validator, normalize_code

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _check_person(first_name: str, last_name: str) -> dict:
    errors = {}
    if not (first_name or "").strip():
        errors["first_name"] = "El nombre es requerido"
    if not (last_name or "").strip():
        errors["last_name"] = "Los apellidos son requeridos"
    return errors


def _check_password(password: str, field: str = "password") -> None:
    if not (password or "").strip():
        raise FormValidationError({field: "La contraseña es requerida"})
    if len(password) < config.MIN_PASSWORD_LENGTH:
        raise WeakPasswordError()


def to_out(doc: dict) -> AdminUserOut:
    perms = doc.get("permissions")
    return AdminUserOut(
        id=doc["id"],
        email=doc.get("email", ""),
        first_name=doc.get("firstName", ""),
        last_name=doc.get("lastName", ""),
        school_code=doc.get("schoolCode", ""),
        school_name=doc.get("schoolName", ""),
        user_type=doc.get("userType", "admin"),
        created_by=doc.get("createdBy"),
        position=doc.get("position"),
        permissions=Permissions(**perms) if perms else None,
        created_at=doc.get("createdAt"),
    )


class UserService:
    """Account operations. Every rule is checked before anything is written.

    Args:
        repository: User persistence.
        validator: School-code checks and built-in admin credentials.
    """

    def __init__(self, repository: Repository, validator: CodeValidator):
        self.repository = repository
        self.validator = validator

    # ------------------------
    # Admin accounts
    # ------------------------
    def register_admin(self, data: RegisterIn) -> dict:
        errors = _check_person(data.first_name, data.last_name)
        if not (data.school_code or "").strip():
            errors["school_code"] = "El código del colegio es requerido"
        if errors:
            raise FormValidationError(errors)
        _check_password(data.password)
        school = normalize_code(data.school_code)
        if not self.validator.is_authorized_school(school):
            raise InvalidSchoolCodeError()
        if self.repository.find_user_by_email(data.email):
            raise DuplicateEmailError()

        doc = self.repository.create_user({
            "email": data.email.strip().lower(),
            "passwordHash": hash_password(data.password),
            "firstName": data.first_name.strip(),
            "lastName": data.last_name.strip(),
            "schoolCode": school,
            "schoolName": self.validator.school_display_info(school)["name"],
            "userType": "admin",
            "createdAt": _now_ms(),
        })
        logger.info("Registered admin %s for school %s", doc["id"], school)
        return doc

    def authenticate(self, email: str, password: str) -> dict:
        """Return the user document or raise InvalidCredentialsError."""
        ok, user = self.validator.validate_admin_credentials(email, password)
        if not ok or user is None:
            logger.info("Failed login for %s", (email or "").strip().lower())
            raise InvalidCredentialsError()
        return user

    def change_password(self, user: dict, data: PasswordChangeIn) -> None:
        if (data.email or "").strip().lower() != user.get("email", "").lower():
            raise FormValidationError({"email": "El correo electrónico no coincide con tu cuenta"})
        if not check_password(data.current_password, user.get("passwordHash", "")):
            raise InvalidCredentialsError("Contraseña actual incorrecta")
        if len(data.new_password or "") < config.MIN_PASSWORD_LENGTH:
            raise WeakPasswordError("La nueva contraseña debe tener al menos 6 caracteres")
        if data.new_password == data.current_password:
            raise FormValidationError({"new_password": "La nueva contraseña debe ser diferente a la actual"})
        self.repository.update_user(user["id"], {"passwordHash": hash_password(data.new_password)})
        logger.info("Password changed for user %s", user["id"])

    # ------------------------
    # Secondary users
    # ------------------------
    def _require_admin(self, admin: dict) -> None:
        if admin.get("userType", "admin") != "admin":
            raise PermissionDeniedError("Solo el administrador puede gestionar usuarios secundarios")

    def _owned(self, admin: dict, user_id: str) -> dict:
        target = self.repository.get_user(user_id)
        if (
            not target
            or target.get("userType") != "secondary"
            or target.get("createdBy") != admin["id"]
            or target.get("schoolCode") != admin.get("schoolCode")
        ):
            raise NotFoundError("Usuario no encontrado")
        return target

    def list_secondary_users(self, admin: dict) -> list[dict]:
        self._require_admin(admin)
        return self.repository.list_secondary_users(admin["id"])

    def create_secondary_user(self, admin: dict, data: SecondaryUserCreate) -> dict:
        self._require_admin(admin)
        errors = _check_person(data.first_name, data.last_name)
        if not (data.position or "").strip():
            errors["position"] = "El cargo es requerido"
        if errors:
            raise FormValidationError(errors)
        _check_password(data.password)
        school = admin.get("schoolCode", "")
        if self.repository.count_secondary_users(school) >= config.MAX_SECONDARY_USERS:
            raise SecondaryUserLimitError()
        if self.repository.find_user_by_email(data.email):
            raise DuplicateEmailError()

        doc = self.repository.create_user({
            "email": data.email.strip().lower(),
            "passwordHash": hash_password(data.password),
            "firstName": data.first_name.strip(),
            "lastName": data.last_name.strip(),
            "schoolCode": school,
            "schoolName": admin.get("schoolName", ""),
            "userType": "secondary",
            "createdBy": admin["id"],
            "position": data.position.strip(),
            "permissions": data.permissions.model_dump(),
            "createdAt": _now_ms(),
        })
        logger.info("Admin %s created secondary user %s", admin["id"], doc["id"])
        return doc

    def update_secondary_user(self, admin: dict, user_id: str, data: SecondaryUserUpdate) -> dict:
        self._require_admin(admin)
        self._owned(admin, user_id)
        changes = {}
        if data.first_name is not None:
            changes["firstName"] = data.first_name.strip()
        if data.last_name is not None:
            changes["lastName"] = data.last_name.strip()
        if data.email is not None:
            changes["email"] = data.email.strip().lower()
        if data.position is not None:
            if not data.position.strip():
                raise FormValidationError({"position": "El cargo es requerido"})
            changes["position"] = data.position.strip()
        if data.permissions is not None:
            changes["permissions"] = data.permissions.model_dump()
        if not changes:
            return self._owned(admin, user_id)
        return self.repository.update_user(user_id, changes)

    def delete_secondary_user(self, admin: dict, user_id: str) -> None:
        self._require_admin(admin)
        self._owned(admin, user_id)
        self.repository.delete_user(user_id)
        logger.info("Admin %s deleted secondary user %s", admin["id"], user_id)


def get_user_service(
    repo: Repository = Depends(get_repository),
    validator: CodeValidator = Depends(get_validator),
) -> UserService:
    return UserService(repo, validator)
