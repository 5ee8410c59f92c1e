"""
Area model — organizational units that hold, review and route documents.

The Mesa de Partes is an Area of type ``MESA_PARTES``; it registers incoming
documents before deriving them to specialized areas.
"""

from datetime import datetime, timezone

from sigedoc.models import db

AREA_TYPES = {"MESA_PARTES", "ESPECIALIZADA", "ADMINISTRATIVA"}


class Area(db.Model):
    __tablename__ = "areas"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    code = db.Column(db.String(30), unique=True, nullable=False)
    area_type = db.Column(db.String(20), nullable=False, default="ESPECIALIZADA")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "area_type": self.area_type,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Area {self.code}>"
