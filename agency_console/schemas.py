"""
Serialization schemas using Marshmallow for the Agency Console.

These schemas convert SQLAlchemy models to and from the plain dict
records that cross the gateway boundary. Ids and timestamps are
dump-only. The cached trust score stays loadable, since the console
writes it back after every recompute; client profile patches are
limited to the editable profile fields before they reach a schema.
Sensitive fields, such as password hashes, are excluded.
"""

from __future__ import annotations

from marshmallow import fields, validate
from marshmallow_sqlalchemy import SQLAlchemyAutoSchema, auto_field

from .models import (
    User,
    Role,
    Agency,
    AgencyStatus,
    AgencyService,
    AgencyPhoto,
    Review,
    ReviewStatus,
    ReviewResponse,
)


class UserSchema(SQLAlchemyAutoSchema):
    """Schema for serialising ``User`` objects."""

    role = fields.Enum(Role, by_value=True)

    class Meta:
        model = User
        load_instance = True
        include_fk = True
        # Exclude password_hash from the serialised output
        exclude = ("password_hash",)


class AgencySchema(SQLAlchemyAutoSchema):
    """Schema for serialising ``Agency`` objects."""

    name = auto_field(validate=validate.Length(min=1, max=150))
    contact_email = auto_field(validate=validate.Email(), allow_none=True)
    status = fields.Enum(AgencyStatus, by_value=True)
    trust_score = auto_field(validate=validate.Range(min=0, max=100))
    created_at = auto_field(dump_only=True)

    class Meta:
        model = Agency
        load_instance = True
        include_fk = True


class AgencyServiceSchema(SQLAlchemyAutoSchema):
    """Schema for serialising ``AgencyService`` objects."""

    name = auto_field(validate=validate.Length(min=1, max=150))
    description = auto_field(validate=validate.Length(max=500), allow_none=True)
    created_at = auto_field(dump_only=True)

    class Meta:
        model = AgencyService
        load_instance = True
        include_fk = True


class AgencyPhotoSchema(SQLAlchemyAutoSchema):
    """Schema for serialising ``AgencyPhoto`` objects."""

    caption = auto_field(validate=validate.Length(max=255), allow_none=True)
    created_at = auto_field(dump_only=True)

    class Meta:
        model = AgencyPhoto
        load_instance = True
        include_fk = True


class ReviewSchema(SQLAlchemyAutoSchema):
    """Schema for serialising ``Review`` objects, including the author's email."""

    rating = auto_field(validate=validate.Range(min=1, max=5))
    content = auto_field(validate=validate.Length(min=1, max=2000))
    status = fields.Enum(ReviewStatus, by_value=True)
    user_email = fields.String(dump_only=True)
    created_at = auto_field(dump_only=True)

    class Meta:
        model = Review
        load_instance = True
        include_fk = True


class ReviewResponseSchema(SQLAlchemyAutoSchema):
    """Schema for serialising ``ReviewResponse`` objects."""

    content = auto_field(validate=validate.Length(min=1, max=2000))
    created_at = auto_field(dump_only=True)

    class Meta:
        model = ReviewResponse
        load_instance = True
        include_fk = True
