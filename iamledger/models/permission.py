"""Permission model for authorization system."""
from datetime import datetime, timezone
from .base import db


class Permission(db.Model):
    """Represents a permission that can be granted to roles."""
    __tablename__ = 'permissions'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False, index=True)
    description = db.Column(db.Text)
    category = db.Column(db.String(50), index=True)  # e.g., 'users', 'roles', 'audit'
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    roles = db.relationship(
        'Role', secondary='role_permissions', back_populates='permissions', order_by='Role.name', viewonly=True
    )

    def __repr__(self):
        return f'<Permission {self.name}>'
