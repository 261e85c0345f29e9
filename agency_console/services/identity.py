"""The acting user, as far as the console is concerned."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from ..models import Role


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: Role = Role.USER
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role is Role.SUPER_ADMIN

    def can_administer(self, agency: Mapping) -> bool:
        """Super admins administer every agency; owners administer their own."""
        return self.is_super_admin or agency.get("owner_id") == self.user_id
