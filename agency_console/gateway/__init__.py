"""Remote data gateway for the agency collections."""

from .backend import SqlAlchemyBackend
from .gateway import (
    AGENCIES,
    SERVICES,
    PHOTOS,
    REVIEWS,
    RESPONSES,
    CircuitBreaker,
    RemoteDataGateway,
    normalize_error,
)
from .result import Result

__all__ = [
    "AGENCIES",
    "SERVICES",
    "PHOTOS",
    "REVIEWS",
    "RESPONSES",
    "CircuitBreaker",
    "RemoteDataGateway",
    "Result",
    "SqlAlchemyBackend",
    "normalize_error",
]
