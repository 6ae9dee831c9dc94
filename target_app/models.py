"""Database models for the demo target service."""

from __future__ import annotations

from typing import Any

from target_app import db

NAME_MAX_LENGTH = 100


class Peanuts(db.Model):
    """
    A Peanuts character.

    Attributes:
        id: Unique identifier.
        name: Character name, 1-100 characters.
        description: Optional free-text description.
    """

    __tablename__ = "peanuts"

    id: int = db.Column(db.Integer, primary_key=True)
    name: str = db.Column(db.String(NAME_MAX_LENGTH), nullable=False)
    description: str | None = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }

    def __repr__(self) -> str:
        return f"<Peanuts {self.id}: {self.name}>"
