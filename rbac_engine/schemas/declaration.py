"""Schema of the declarative permission/role document."""

from __future__ import annotations

from collections import Counter
from typing import List

from pydantic import BaseModel, ConfigDict, model_validator

from rbac_engine.schemas.permission import PermissionSpec
from rbac_engine.schemas.role import RoleSpec


class Declaration(BaseModel):
    """Target state consumed by the reconciler.

    The document is validated as a whole: any self-inconsistency rejects the
    entire declaration before storage is touched.
    """

    model_config = ConfigDict(extra="ignore")

    permissions: List[PermissionSpec]
    roles: List[RoleSpec]

    @model_validator(mode="after")
    def check_consistency(self) -> "Declaration":
        problems: List[str] = []

        permission_counts = Counter(spec.name for spec in self.permissions)
        for name, count in sorted(permission_counts.items()):
            if count > 1:
                problems.append(f"permission '{name}' is declared {count} times")

        role_counts = Counter(spec.name for spec in self.roles)
        for name, count in sorted(role_counts.items()):
            if count > 1:
                problems.append(f"role '{name}' is declared {count} times")

        declared = set(permission_counts)
        for role in self.roles:
            for name, count in sorted(Counter(role.permissions).items()):
                if count > 1:
                    problems.append(f"role '{role.name}' lists permission '{name}' {count} times")
            undeclared = sorted(set(role.permissions) - declared)
            if undeclared:
                problems.append(f"role '{role.name}' references undeclared permissions: {', '.join(undeclared)}")

        if problems:
            raise ValueError("; ".join(problems))
        return self

    @property
    def permission_names(self) -> List[str]:
        return [spec.name for spec in self.permissions]

    @property
    def role_names(self) -> List[str]:
        return [spec.name for spec in self.roles]
