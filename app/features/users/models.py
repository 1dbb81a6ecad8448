"""
User model with ULID primary keys.
"""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class User(Base, TimestampMixin):
    """
    Account that signs in to the admin panel.
    
    Holds zero or more roles and zero or more direct permission grants.
    """
    __tablename__ = "users"
    
    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    
    # bcrypt hash, never the plain password
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    
    # Relationships (read-only; written through the assignment synchronizer)
    roles: Mapped[list["Role"]] = relationship(  # type: ignore
        "Role",
        secondary="user_has_roles",
        lazy="selectin",
        order_by="Role.name",
        viewonly=True,
    )
    
    permissions: Mapped[list["Permission"]] = relationship(  # type: ignore
        "Permission",
        secondary="user_has_permissions",
        lazy="selectin",
        order_by="Permission.name",
        viewonly=True,
    )
    
    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"


# Import at the end so the role/permission mappers are registered alongside User
from app.features.permissions.models import Permission, Role  # noqa: E402,F401
