"""
Identity lookup for officers and mediators.

The engine only reads personnel records: whether they are active and which
capability flags they hold. Mediator case counters are the one exception and
are written by the case controller through its own unit of work.
"""

from abc import ABC, abstractmethod
from typing import Optional

from rentcontrol.models.entities import Mediator, Officer
from rentcontrol.storage.base import Repository


class IdentityLookup(ABC):

    @abstractmethod
    async def get_officer(self, officer_id: str) -> Optional[Officer]:
        """Return the officer, or None when no such officer exists."""

    @abstractmethod
    async def get_mediator(self, mediator_id: str) -> Optional[Mediator]:
        """Return the mediator, or None when no such mediator exists."""


class RepositoryIdentityLookup(IdentityLookup):
    """Personnel records kept in the same repository as the lifecycle entities."""

    def __init__(self, repository: Repository):
        self._repository = repository

    async def get_officer(self, officer_id: str) -> Optional[Officer]:
        return await self._repository.find(Officer, officer_id)

    async def get_mediator(self, mediator_id: str) -> Optional[Mediator]:
        return await self._repository.find(Mediator, mediator_id)
