"""Database models for the fulfillment service."""

from fulfillment_service.models.entities import *  # noqa: F401,F403
from fulfillment_service.models.entities import __all__  # noqa: F401
