"""User model for the identity store."""
from datetime import datetime, timezone

from sqlalchemy.orm import validates

from ..errors import ConstraintViolation
from .base import db


class UserStatus:
    """Allowed values for ``User.status``."""
    ACTIVE = 'ACTIVE'
    LOCKED = 'LOCKED'
    DISABLED = 'DISABLED'

    ALL = (ACTIVE, LOCKED, DISABLED)


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), nullable=False, unique=True, index=True)
    email = db.Column(db.String(120), nullable=False, unique=True)
    status = db.Column(db.String(20), nullable=False, default=UserStatus.ACTIVE)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('ACTIVE', 'LOCKED', 'DISABLED')", name='status_domain'
        ),
    )

    # Relationships
    roles = db.relationship(
        'Role',
        secondary='user_roles',
        back_populates='users',
        order_by='Role.name',
        viewonly=True,
    )

    def __repr__(self):
        return f'<User {self.username}>'

    @validates('status')
    def validate_status(self, key, value):
        if value not in UserStatus.ALL:
            raise ConstraintViolation(
                f"Invalid status '{value}'; expected one of {', '.join(UserStatus.ALL)}."
            )
        return value
