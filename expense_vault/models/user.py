"""
Account Models

DESIGN DECISION: Only the WRAPPED master key and its salt ever appear
in these models. The plaintext master key and the password-derived key
are never modelled, so they cannot be serialized by accident.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class UserAccount(BaseModel):
    """A registered user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique user ID"
    )
    username: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Login name (unique)"
    )
    password_hash: str = Field(
        ...,
        repr=False,
        description="bcrypt hash of the login password"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
    )


class MasterKeyMaterial(BaseModel):
    """
    Persisted, opaque key material for one user.

    Both values are plain text columns. The server stores and returns
    them but never derives keys or decrypts.
    """

    user_id: Optional[UUID] = None
    wrapped_master_key: str = Field(
        ...,
        min_length=1,
        description="Master key envelope (iv:ciphertext:tag)"
    )
    salt: str = Field(
        ...,
        min_length=1,
        description="Base64 PBKDF2 salt (public)"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
    )


class AuthConfig(BaseModel):
    """Public, unauthenticated deployment configuration."""

    require_invite: bool
    encryption: bool


class LoginResult(BaseModel):
    """What a successful login hands back to the client."""

    user_id: UUID
    username: str
    encryption: bool = False
    wrapped_master_key: Optional[str] = None
    master_key_salt: Optional[str] = None

    @property
    def key_material(self) -> Optional[MasterKeyMaterial]:
        """Key material if the server returned any."""
        if not self.wrapped_master_key or not self.master_key_salt:
            return None
        return MasterKeyMaterial(
            user_id=self.user_id,
            wrapped_master_key=self.wrapped_master_key,
            salt=self.master_key_salt,
        )
