"""
Резервации пар: координатор и фоновое истечение.
"""

from .coordinator import ReservationCoordinator
from .sweeper import ExpirySweeper

__all__ = ['ReservationCoordinator', 'ExpirySweeper']
