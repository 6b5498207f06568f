"""
Services for the StrokeCheck screening core.
"""

from .screening_service import ScreeningService, SessionContext, EmergencyContact, PROFILE_FACTORIES

__all__ = ['ScreeningService', 'SessionContext', 'EmergencyContact', 'PROFILE_FACTORIES']
