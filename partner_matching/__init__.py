"""
Partner Matching - подбор языковых партнёров для бота.

Components:
- matching/      - Compatibility Evaluator и Candidate Ranker
- repository/    - ProfileRepository: SQLAlchemy (PostgreSQL / SQLite) и in-memory
- reservations/  - Reservation Coordinator и Expiry Sweeper
- service.py     - Partner Matching Service для хендлеров бота

Configure via config/matching.yaml:
    matching:
      reservation_ttl_seconds: 300
      sweep_interval_seconds: 30

Quick Start:
    from database import init_database
    from partner_matching import PartnerMatchingService

    async def main():
        await init_database()
        service = PartnerMatchingService()
        service.start()
        outcome = await service.request_match(user_id=123456789)
"""

from partner_matching.errors import ErrorKind, MatchingError
from partner_matching.models import MatchOutcome, MatchStatus, Profile, ProficiencyLevel, Reservation, ReservationState
from partner_matching.service import PartnerMatchingService

# Version info
__version__ = '0.1.0'

__all__ = [
    'ErrorKind',
    'MatchingError',
    'MatchOutcome',
    'MatchStatus',
    'Profile',
    'ProficiencyLevel',
    'Reservation',
    'ReservationState',
    'PartnerMatchingService',
    '__version__',
]
