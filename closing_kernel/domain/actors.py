"""
Actor directory -- resolves actor ids to display names.

The identity provider is an external collaborator; the kernel only needs a
name to show next to "closed by" in status projections.
"""

from typing import Mapping, Protocol
from uuid import UUID


class ActorDirectory(Protocol):
    """Protocol for resolving an actor id to a display name."""

    def display_name(self, actor_id: UUID) -> str | None: ...


class StaticActorDirectory:
    """In-memory directory backed by a mapping (tests, CLI, small deployments)."""

    def __init__(self, names: Mapping[UUID, str] | None = None):
        self._names = dict(names or {})

    def register(self, actor_id: UUID, name: str) -> None:
        self._names[actor_id] = name

    def display_name(self, actor_id: UUID) -> str | None:
        return self._names.get(actor_id)
