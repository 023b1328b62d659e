"""
Profile Repository для Partner Matching Engine.

Example usage:
    from partner_matching.repository import SQLAlchemyProfileRepository

    repository = SQLAlchemyProfileRepository()
    snapshot = await repository.load_available_snapshot(requester_id=123456789)
"""

from .base import ProfileRepository, ProfileTransition
from .memory import InMemoryProfileRepository
from .sqlalchemy_adapter import SQLAlchemyProfileRepository

__all__ = [
    'ProfileRepository',
    'ProfileTransition',
    'InMemoryProfileRepository',
    'SQLAlchemyProfileRepository',
]
