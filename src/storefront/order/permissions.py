"""Actors and permissions for order operations.

The HTTP layer authenticates the caller and attaches an actor id and role.
Staff roles keep the numeric ids of the user table (1 admin, 2 employee).
"""

from dataclasses import dataclass
from enum import Enum

from storefront.errors import PermissionDenied


class Role(Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    EMPLOYEE = "employee"
    SYSTEM = "system"


class Permission(Enum):
    MANAGE_ORDERS = "manage_orders"
    REFUND_ORDERS = "refund_orders"
    MANAGE_CATALOG = "manage_catalog"


ROLE_PERMISSIONS = {
    Role.ADMIN: set(Permission),
    Role.EMPLOYEE: {Permission.MANAGE_ORDERS},
    Role.CUSTOMER: set(),
    Role.SYSTEM: {Permission.MANAGE_ORDERS},
}

_ROLE_IDS = {"1": Role.ADMIN, "2": Role.EMPLOYEE}


def parse_role(value) -> Role:
    """Accept a role name or a staff role id."""
    raw = str(value or Role.CUSTOMER.value).strip().lower()
    if raw in _ROLE_IDS:
        return _ROLE_IDS[raw]
    try:
        return Role(raw)
    except ValueError:
        raise PermissionDenied(f"Unknown role: {value}") from None


@dataclass(frozen=True)
class Actor:
    role: Role = Role.CUSTOMER
    actor_id: str | None = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=Role.SYSTEM, actor_id="expiry-sweeper")

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.ADMIN, Role.EMPLOYEE)

    def can(self, permission: Permission) -> bool:
        return permission in ROLE_PERMISSIONS[self.role]

    def require(self, permission: Permission) -> None:
        if not self.can(permission):
            raise PermissionDenied(
                f"Role {self.role.value} lacks the {permission.value} permission",
                permission=permission.value,
            )

    def owns(self, customer_id) -> bool:
        return customer_id is not None and self.actor_id is not None and str(customer_id) == str(self.actor_id)

    def can_access(self, customer_id) -> bool:
        """Staff see every order; guest orders are reachable by anyone holding their id."""
        if self.is_staff or self.role == Role.SYSTEM:
            return True
        return customer_id is None or self.owns(customer_id)

    def require_access(self, customer_id) -> None:
        if not self.can_access(customer_id):
            raise PermissionDenied("This order belongs to another customer")

    def require_admin(self) -> None:
        if self.role not in (Role.ADMIN, Role.SYSTEM):
            raise PermissionDenied("Only administrators may do this")
