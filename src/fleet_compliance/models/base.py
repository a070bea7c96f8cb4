# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Base Pydantic model configuration for all domain models.

This module provides the foundation for all domain models in the system,
enforcing immutability and strict validation. State changes always produce a
new instance through :meth:`VersionedModel.next_version`.
"""

from typing import Any, Self

from beartype import beartype
from pydantic import BaseModel, ConfigDict, Field


@beartype
class BaseModelConfig(BaseModel):
    """Base model with strict configuration for all domain entities.

    Enforces:
    - Immutability (frozen=True)
    - No extra fields allowed (extra="forbid")
    - Validation on assignment
    - Automatic whitespace stripping
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )


@beartype
class VersionedModel(BaseModelConfig):
    """Persisted model carrying an optimistic-concurrency version."""

    version: int = Field(default=1, ge=1, description="Optimistic lock version")

    def next_version(self, **changes: Any) -> Self:
        """Return a validated copy with ``changes`` applied and version bumped."""
        data = self.model_dump()
        data.update(changes)
        data["version"] = self.version + 1
        return type(self).model_validate(data)
