"""
project: CrystalTides Gacha
module: models.py
License: MIT

Account model used by the gacha service.

Notes:
- Passwords are stored as hashed values (Werkzeug generate_password_hash).
- The Minecraft link columns are written by the external linking flow; this
  service only reads them to address reward commands.
"""

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from gacha import db


class User(UserMixin, db.Model):
    """Authenticated player account.

    Attributes:
        id: Primary key; the stable player id rolls are keyed by.
        username: Unique handle for login and display.
        password: Hashed password string (never store plaintext).
        role: 'admin' | 'user'
        minecraft_name: Linked in-game name used as the command target.
        minecraft_uuid: Linked in-game UUID (informational).
    """

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="user")
    minecraft_name = db.Column(db.String(16), nullable=True)
    minecraft_uuid = db.Column(db.String(36), nullable=True)

    def set_password(self, raw_password: str):
        """Hash and store a new password value."""
        self.password = generate_password_hash(raw_password)

    def check_password(self, candidate: str) -> bool:
        try:
            return check_password_hash(self.password or "", candidate)
        except ValueError:
            # Unknown hash method stored by an older deployment
            return False

    @property
    def is_admin(self) -> bool:
        return (self.role or "user") == "admin"
