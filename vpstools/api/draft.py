"""Declarative admission input for the fleet.

Example:
    draft = VPSDraft(host="203.0.113.5", username="root", password="secret")
    instance = await coordinator.add_instance(draft)

    patch = InstancePatch(group="eu", tags=["edge"])
    coordinator.edit_instance(instance.id, patch)
"""

from __future__ import annotations

import ipaddress
import re
import uuid
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from vpstools.api.model import Credential, KeyAuth, PasswordAuth, VPSInstance, utcnow
from vpstools.constants import (
    DEFAULT_GROUP,
    DEFAULT_SSH_PORT,
    MAX_GROUP_LENGTH,
    MAX_NAME_LENGTH,
    MAX_USERNAME_LENGTH,
)

_HOSTNAME = re.compile(r"^([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")


def validate_host(host: str) -> str:
    """Accept an IP literal or a dotted DNS name."""
    host = host.strip()
    if not host:
        raise ValueError("host must not be empty")
    try:
        ipaddress.ip_address(host)
    except ValueError:
        if not _HOSTNAME.match(host):
            raise ValueError(f"host '{host}' is neither an IP address nor a domain name") from None
    return host


def _dedupe(tags: list[str]) -> list[str]:
    return list(dict.fromkeys(t.strip() for t in tags if t.strip()))


class VPSDraft(BaseModel):
    """Unvalidated-by-I/O description of a VPS to admit into the fleet.

    Exactly one of ``password`` / ``key_path`` must be given. ``name``
    falls back to the host when left empty.
    """

    host: str = Field(description="IP address or domain name")
    username: str = Field(description="SSH login user")
    port: int = Field(default=DEFAULT_SSH_PORT, description="SSH port")
    name: str = Field(default="", description="Display name")
    password: str | None = Field(default=None, description="SSH password")
    key_path: str | None = Field(default=None, description="Path to a private key")
    key_passphrase: str | None = Field(default=None, description="Passphrase for key_path")
    group: str = Field(default=DEFAULT_GROUP, description="Free-text bucket")
    tags: list[str] = Field(default_factory=list, description="Ordered, unique labels")

    model_config = {"extra": "forbid"}

    @field_validator("host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        return validate_host(value)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if len(value) > MAX_NAME_LENGTH:
            raise ValueError(f"name must be at most {MAX_NAME_LENGTH} characters")
        return value

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be empty")
        if len(value) > MAX_USERNAME_LENGTH:
            raise ValueError(f"username must be at most {MAX_USERNAME_LENGTH} characters")
        return value

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 < value <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return value

    @field_validator("group")
    @classmethod
    def _check_group(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("group must not be empty")
        if len(value) > MAX_GROUP_LENGTH:
            raise ValueError(f"group must be at most {MAX_GROUP_LENGTH} characters")
        return value

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, value: list[str]) -> list[str]:
        return _dedupe(value)

    @model_validator(mode="after")
    def _check_credential(self) -> Self:
        match (self.password, self.key_path):
            case (None, None):
                raise ValueError("either password or key_path is required")
            case (str(), str()):
                raise ValueError("password and key_path are mutually exclusive")
            case ("", _) | (_, ""):
                raise ValueError("credential must not be empty")
        return self

    @property
    def credential(self) -> Credential:
        if self.key_path is not None:
            return KeyAuth(self.key_path, self.key_passphrase)
        assert self.password is not None
        return PasswordAuth(self.password)

    def build(self) -> VPSInstance:
        """Construct an instance with a fresh id. Nothing is stored."""
        now = utcnow()
        return VPSInstance(
            id=str(uuid.uuid4()),
            name=self.name or self.host,
            host=self.host,
            port=self.port,
            username=self.username,
            credential=self.credential,
            group=self.group,
            tags=tuple(self.tags),
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def from_instance(cls, instance: VPSInstance) -> VPSDraft:
        match instance.credential:
            case PasswordAuth(password=password):
                auth: dict[str, Any] = {"password": password}
            case KeyAuth(key_path=key_path, passphrase=passphrase):
                auth = {"key_path": key_path, "key_passphrase": passphrase}
        return cls(
            host=instance.host,
            username=instance.username,
            port=instance.port,
            name=instance.name,
            group=instance.group,
            tags=list(instance.tags),
            **auth,
        )


class InstancePatch(BaseModel):
    """Field changes for an existing instance. ``None`` means unchanged.

    Setting ``password`` switches the instance to password login and setting
    ``key_path`` switches it to key login; giving both is rejected.
    """

    name: str | None = None
    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    key_path: str | None = None
    key_passphrase: str | None = None
    group: str | None = None
    tags: list[str] | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _check_credential(self) -> Self:
        if self.password is not None and self.key_path is not None:
            raise ValueError("password and key_path are mutually exclusive")
        return self

    def apply(self, instance: VPSInstance) -> VPSInstance:
        """Merge onto ``instance`` and re-validate the result as a draft."""
        current = VPSDraft.from_instance(instance).model_dump()
        changes = self.model_dump(exclude_none=True, exclude={"is_active"})
        if "password" in changes:
            current["key_path"] = None
            current["key_passphrase"] = None
        if "key_path" in changes:
            current["password"] = None
        merged = VPSDraft(**{**current, **changes})
        return VPSInstance(
            id=instance.id,
            name=merged.name or merged.host,
            host=merged.host,
            port=merged.port,
            username=merged.username,
            credential=merged.credential,
            group=merged.group,
            tags=tuple(merged.tags),
            is_active=instance.is_active if self.is_active is None else self.is_active,
            last_connected=instance.last_connected,
            system_info=instance.system_info,
            services=instance.services,
            created_at=instance.created_at,
            updated_at=utcnow(),
        )
