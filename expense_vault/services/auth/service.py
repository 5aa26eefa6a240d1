"""
Account Service (server side)

Registration and login, including the server's part of the master key
lifecycle:

REGISTRATION (encryption enabled):
1. Generate a random master key and salt
2. Derive the wrapping key from the password (PBKDF2)
3. Wrap the master key and persist ONLY the wrapped key + salt
4. Forget the plaintext master key

LOGIN:
1. Verify the bcrypt password hash
2. Hand back the wrapped key + salt; the client unwraps it

The server never keeps a plaintext master key or password-derived key
beyond the registration call, and never decrypts expense fields.
"""

import asyncio
from typing import Optional
from uuid import UUID

import structlog

from expense_vault.audit import AuditLogger
from expense_vault.config import AuthSettings, EncryptionSettings, get_settings
from expense_vault.crypto.master_key import provision_master_key
from expense_vault.models.user import AuthConfig, LoginResult, UserAccount
from expense_vault.services.auth.passwords import hash_password, verify_password
from expense_vault.services.storage import (
    DuplicateError,
    ExpenseStorageInterface,
    UserStorageInterface,
)
from expense_vault.validation import PasswordPolicy


logger = structlog.get_logger(__name__)


class AuthError(Exception):
    """Base exception for account operations."""
    pass


class RegistrationError(AuthError):
    """Registration input is incomplete."""
    pass


class InviteCodeError(RegistrationError):
    """An invite code is required and the one given does not match."""
    pass


class WeakPasswordError(RegistrationError):
    """The password does not meet the password policy."""

    def __init__(self, messages: list[str]):
        self.messages = messages
        super().__init__("; ".join(messages))


class InvalidCredentialsError(AuthError):
    """
    Unknown user, wrong password or a master key that would not unwrap.

    All three share one message so none can be told apart from outside.
    """

    USER_MESSAGE = "Incorrect username or password"

    def __init__(self, message: str = USER_MESSAGE):
        super().__init__(message)


class AuthService:
    """
    Registers users and logs them in.

    Args:
        user_storage: Accounts and key material
        expense_storage: Needed only to migrate legacy expenses to the
            first registered user
        audit_logger: Optional audit trail
    """

    def __init__(
        self,
        user_storage: UserStorageInterface,
        expense_storage: Optional[ExpenseStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        auth_settings: Optional[AuthSettings] = None,
        encryption_settings: Optional[EncryptionSettings] = None,
    ):
        self._users = user_storage
        self._expenses = expense_storage
        self._audit_logger = audit_logger
        self._auth_settings = auth_settings or get_settings().auth
        self._encryption = encryption_settings or get_settings().encryption
        self._password_policy = PasswordPolicy(self._auth_settings)

    @property
    def encryption_enabled(self) -> bool:
        return self._encryption.enabled

    def get_public_config(self) -> AuthConfig:
        """Unauthenticated config the client needs before login."""
        return AuthConfig(
            require_invite=self._auth_settings.require_invite,
            encryption=self._encryption.enabled,
        )

    async def _reject(self, username: str, error: RegistrationError,
                      correlation_id: Optional[UUID]) -> None:
        if self._audit_logger:
            await self._audit_logger.log_registration_rejected(
                username=username,
                reason=str(error),
                correlation_id=correlation_id,
            )
        raise error

    async def register(
        self,
        username: str,
        password: str,
        invite_code: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> UserAccount:
        """
        Create an account (and its wrapped master key if encryption is on).

        Raises:
            RegistrationError: Missing username or password
            InviteCodeError: Wrong or missing invite code
            WeakPasswordError: Password policy not met
            DuplicateError: Username already taken
        """
        username = (username or "").strip()
        if not username or not password:
            await self._reject(
                username, RegistrationError("Username and password are required"), correlation_id
            )

        if self._auth_settings.require_invite and invite_code != self._auth_settings.invite_code:
            await self._reject(username, InviteCodeError("Invalid invite code"), correlation_id)

        policy = self._password_policy.validate(password)
        if not policy.is_valid:
            await self._reject(
                username,
                WeakPasswordError([issue.message for issue in policy.issues]),
                correlation_id,
            )

        if await self._users.get_user_by_username(username) is not None:
            if self._audit_logger:
                await self._audit_logger.log_registration_rejected(
                    username=username,
                    reason="username taken",
                    correlation_id=correlation_id,
                )
            raise DuplicateError(f"Username already registered: {username}")

        password_hash = await asyncio.to_thread(
            hash_password, password, self._auth_settings.bcrypt_rounds
        )
        user = UserAccount(username=username, password_hash=password_hash)

        key_material = None
        if self._encryption.enabled:
            key_material, _ = await asyncio.to_thread(provision_master_key, password)
            key_material = key_material.model_copy(update={"user_id": user.id})

        user = await self._users.create_user(user, key_material)
        # counted after the write so two racing first registrations cannot both adopt
        is_first_user = await self._users.count_users() == 1
        logger.info("user_registered", user_id=str(user.id), encryption=key_material is not None)

        if self._audit_logger:
            await self._audit_logger.log_user_registered(
                user_id=user.id,
                username=user.username,
                encryption=key_material is not None,
                correlation_id=correlation_id,
            )
            if key_material is not None:
                await self._audit_logger.log_master_key_provisioned(
                    user_id=user.id,
                    correlation_id=correlation_id,
                )

        if is_first_user and self._expenses is not None:
            adopted = await self._expenses.assign_unowned_expenses(user.id)
            if adopted:
                logger.info("legacy_expenses_migrated", user_id=str(user.id), count=adopted)
                if self._audit_logger:
                    await self._audit_logger.log_legacy_expenses_migrated(
                        user_id=user.id,
                        count=adopted,
                        correlation_id=correlation_id,
                    )

        return user

    async def login(
        self,
        username: str,
        password: str,
        correlation_id: Optional[UUID] = None,
    ) -> LoginResult:
        """
        Verify credentials and return the user's wrapped key material.

        Raises:
            InvalidCredentialsError: Unknown user or wrong password
        """
        user = await self._users.get_user_by_username((username or "").strip())
        valid = user is not None and await asyncio.to_thread(
            verify_password, password or "", user.password_hash
        )
        if not valid:
            if self._audit_logger:
                await self._audit_logger.log_login_failed(
                    username=username,
                    correlation_id=correlation_id,
                )
            raise InvalidCredentialsError()

        result = LoginResult(user_id=user.id, username=user.username)
        if self._encryption.enabled:
            material = await self._users.get_key_material(user.id)
            result = result.model_copy(update={
                "encryption": True,
                "wrapped_master_key": material.wrapped_master_key if material else None,
                "master_key_salt": material.salt if material else None,
            })

        if self._audit_logger:
            await self._audit_logger.log_login_succeeded(
                user_id=user.id,
                username=user.username,
                correlation_id=correlation_id,
            )
        return result
