"""Contract between the automation engine and the CRM it automates."""

from .gateway import CrmGateway, EntityNotFoundError, RecordSnapshot
from .memory import InMemoryCrmGateway

__all__ = ["CrmGateway", "EntityNotFoundError", "InMemoryCrmGateway", "RecordSnapshot"]
