"""
Role and Permission models plus the many-to-many junction tables.

Junction rows are written only through the assignment synchronizer
(app.features.permissions.sync); the ORM relationships below are read-only
views used to embed assignments in API responses.
"""
from sqlalchemy import String, ForeignKey, Table, Column, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core import config
from app.core.database.base import Base, TimestampMixin, generate_ulid


# ============================================================================
# Association Tables for Many-to-Many Relationships
# ============================================================================

# Role-Permission relationship
role_has_permissions = Table(
    "role_has_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

# User-Role relationship
user_has_roles = Table(
    "user_has_roles",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

# Direct user permissions (granted independently of any role)
user_has_permissions = Table(
    "user_has_permissions",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    A named capability, conventionally "<resource>.<action>" (e.g. "users.edit").

    Names are free-form; coarse-grained names such as "manage users" are valid too.
    """
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("name", "guard_name", name="uq_permissions_name_guard"),)
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    guard_name: Mapped[str] = mapped_column(String(50), nullable=False, default=config.DEFAULT_GUARD)
    
    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r}, guard={self.guard_name})>"


class Role(Base, TimestampMixin):
    """
    Named bundle of permissions assigned to users.
    
    Examples: admin, editor, user, super-admin (bypasses every check)
    """
    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("name", "guard_name", name="uq_roles_name_guard"),)
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    guard_name: Mapped[str] = mapped_column(String(50), nullable=False, default=config.DEFAULT_GUARD)
    
    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_has_permissions,
        lazy="selectin",
        order_by="Permission.name",
        viewonly=True,
    )
    
    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, guard={self.guard_name})>"
