"""
Database models for the Agency Console.

Agencies are owned by a user account and carry a set of dependent
collections: services, photos and customer reviews, each review having
at most one administrator response. The ``trust_score`` column on
``Agency`` is a cached, derived value; it is recomputed by the console
whenever one of its inputs (services, approved reviews, verification)
changes.

Table names double as the collection names the gateway exposes, so
they must stay in step with ``agency_console.gateway``.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional, List

from werkzeug.security import generate_password_hash, check_password_hash

from . import db


def _enum_values(enum_class) -> list[str]:
    # store the lowercase values so equality filters can use plain strings
    return [member.value for member in enum_class]


class Role(enum.Enum):
    """Enumeration of user roles."""
    USER = "user"
    AGENCY_ADMIN = "agency_admin"
    SUPER_ADMIN = "super_admin"


class AgencyStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(db.Model):
    __allow_unmapped__ = True
    """A user of the system.

    Plain users submit reviews. Agency admins own and manage their
    agencies, while super admins may administer every agency and decide
    on verification and listing status. Passwords are stored as salted
    hashes.
    """
    __tablename__ = "users"

    id: int = db.Column(db.Integer, primary_key=True)
    email: str = db.Column(db.String(120), unique=True, nullable=False)
    full_name: Optional[str] = db.Column(db.String(100))
    password_hash: str = db.Column(db.String(256), nullable=False)
    role: Role = db.Column(
        db.Enum(Role, values_callable=_enum_values), default=Role.USER, nullable=False
    )

    agencies: List[Agency] = db.relationship("Agency", back_populates="owner")
    reviews: List[Review] = db.relationship("Review", back_populates="author")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"


class Agency(db.Model):
    __allow_unmapped__ = True
    """An agency listing and its cached trust score."""
    __tablename__ = "agencies"

    id: int = db.Column(db.Integer, primary_key=True)
    name: str = db.Column(db.String(150), nullable=False)
    location: Optional[str] = db.Column(db.String(150))
    description: Optional[str] = db.Column(db.Text)
    contact_phone: Optional[str] = db.Column(db.String(50))
    contact_email: Optional[str] = db.Column(db.String(120))
    website: Optional[str] = db.Column(db.String(255))
    business_hours: Optional[str] = db.Column(db.String(255))
    status: AgencyStatus = db.Column(
        db.Enum(AgencyStatus, values_callable=_enum_values),
        default=AgencyStatus.PENDING,
        nullable=False,
    )
    is_verified: bool = db.Column(db.Boolean, default=False, nullable=False)
    # Derived from services, approved reviews and verification (0-100).
    trust_score: int = db.Column(db.Integer, default=0, nullable=False)
    image_url: Optional[str] = db.Column(db.String(500))
    brochure_url: Optional[str] = db.Column(db.String(500))
    owner_id: Optional[int] = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    owner: Optional[User] = db.relationship("User", back_populates="agencies")
    services: List[AgencyService] = db.relationship(
        "AgencyService", back_populates="agency", cascade="all, delete-orphan"
    )
    photos: List[AgencyPhoto] = db.relationship(
        "AgencyPhoto", back_populates="agency", cascade="all, delete-orphan"
    )
    reviews: List[Review] = db.relationship(
        "Review", back_populates="agency", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.CheckConstraint("trust_score >= 0 AND trust_score <= 100", name="ck_agency_trust_score"),
    )

    def __repr__(self) -> str:
        return f"<Agency {self.name}>"


class AgencyService(db.Model):
    __allow_unmapped__ = True
    """A service offered by an agency. Each one counts towards the trust score."""
    __tablename__ = "agency_services"

    id: int = db.Column(db.Integer, primary_key=True)
    agency_id: int = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False)
    name: str = db.Column(db.String(150), nullable=False)
    description: Optional[str] = db.Column(db.String(500))
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    agency: Agency = db.relationship("Agency", back_populates="services")

    def __repr__(self) -> str:
        return f"<AgencyService {self.name} agency={self.agency_id}>"


class AgencyPhoto(db.Model):
    __allow_unmapped__ = True
    """A photo attached to an agency.

    At most one photo per agency may be flagged as the cover. The partial
    unique index enforces this in storage, which is why changing the
    cover always clears the old flag before setting the new one.
    """
    __tablename__ = "agency_photos"

    id: int = db.Column(db.Integer, primary_key=True)
    agency_id: int = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False)
    url: str = db.Column(db.String(500), nullable=False)
    caption: Optional[str] = db.Column(db.String(255))
    is_cover: bool = db.Column(db.Boolean, default=False, nullable=False)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    agency: Agency = db.relationship("Agency", back_populates="photos")

    __table_args__ = (
        db.Index(
            "uix_agency_cover_photo",
            "agency_id",
            unique=True,
            sqlite_where=db.text("is_cover = 1"),
            postgresql_where=db.text("is_cover"),
        ),
    )

    def __repr__(self) -> str:
        return f"<AgencyPhoto {self.id} agency={self.agency_id} cover={self.is_cover}>"


class Review(db.Model):
    __allow_unmapped__ = True
    """A customer review. Only approved reviews contribute to the trust score."""
    __tablename__ = "reviews"

    id: int = db.Column(db.Integer, primary_key=True)
    agency_id: int = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False)
    user_id: int = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    rating: int = db.Column(db.Integer, nullable=False)
    content: str = db.Column(db.Text, nullable=False)
    status: ReviewStatus = db.Column(
        db.Enum(ReviewStatus, values_callable=_enum_values),
        default=ReviewStatus.PENDING,
        nullable=False,
    )
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    agency: Agency = db.relationship("Agency", back_populates="reviews")
    author: User = db.relationship("User", back_populates="reviews")
    response: Optional[ReviewResponse] = db.relationship(
        "ReviewResponse", back_populates="review", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating"),
    )

    @property
    def user_email(self) -> Optional[str]:
        return self.author.email if self.author else None

    def __repr__(self) -> str:
        return f"<Review {self.id} agency={self.agency_id} rating={self.rating} {self.status.value}>"


class ReviewResponse(db.Model):
    __allow_unmapped__ = True
    """An administrator's response to a review. Immutable once created."""
    __tablename__ = "review_responses"

    id: int = db.Column(db.Integer, primary_key=True)
    # one response per review
    review_id: int = db.Column(db.Integer, db.ForeignKey("reviews.id"), unique=True, nullable=False)
    author_id: Optional[int] = db.Column(db.Integer, db.ForeignKey("users.id"))
    content: str = db.Column(db.Text, nullable=False)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    review: Review = db.relationship("Review", back_populates="response")

    def __repr__(self) -> str:
        return f"<ReviewResponse review={self.review_id}>"
