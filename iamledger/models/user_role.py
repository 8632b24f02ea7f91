"""Association table for User-Role many-to-many relationship."""
from datetime import datetime, timezone
from .base import db


class UserRole(db.Model):
    """Association table linking users to roles."""
    __tablename__ = 'user_roles'

    # The composite primary key keeps a (user, role) pair unique
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey('roles.id'), primary_key=True)
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f'<UserRole user_id={self.user_id} role_id={self.role_id}>'
