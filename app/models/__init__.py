# Import all models for easier access
from .event import Event, EventStatus  # noqa: F401
from .registration import Registration, RegistrationStatus  # noqa: F401
from .user import User, UserRole  # noqa: F401
