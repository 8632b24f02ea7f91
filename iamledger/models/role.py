"""Role model for authorization system."""
from datetime import datetime, timezone
from .base import db


class Role(db.Model):
    """Represents a role that can be assigned to users."""
    __tablename__ = 'roles'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False, index=True)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    permissions = db.relationship(
        'Permission',
        secondary='role_permissions',
        back_populates='roles',
        order_by='Permission.name',
        viewonly=True,
    )
    users = db.relationship(
        'User', secondary='user_roles', back_populates='roles', order_by='User.username', viewonly=True
    )

    def __repr__(self):
        return f'<Role {self.name}>'
