"""
closing_api/dependencies.py

Shared FastAPI dependencies: the process runtime, read sessions, the query
selector, and the acting user from the ``X-Actor-Id`` header.
"""

from __future__ import annotations

from typing import Iterator
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from closing_config.bridges import ClosingRuntime
from closing_kernel.selectors.closing_selector import ClosingSelector
from closing_services.closing_coordinator import ClosingCoordinator
from closing_services.recalculation_coordinator import RecalculationCoordinator


def get_runtime(request: Request) -> ClosingRuntime:
    return request.app.state.runtime


def get_read_session(runtime: ClosingRuntime = Depends(get_runtime)) -> Iterator[Session]:
    """Short-lived session for queries; rolled back on close, never committed."""
    session = runtime.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_selector(
    session: Session = Depends(get_read_session),
    runtime: ClosingRuntime = Depends(get_runtime),
) -> ClosingSelector:
    return ClosingSelector(session, clock=runtime.clock, actors=runtime.actors)


def get_closing_coordinator(
    runtime: ClosingRuntime = Depends(get_runtime),
) -> ClosingCoordinator:
    return runtime.closing


def get_recalculation_coordinator(
    runtime: ClosingRuntime = Depends(get_runtime),
) -> RecalculationCoordinator:
    return runtime.recalculation


def get_actor_id(x_actor_id: UUID = Header(alias="X-Actor-Id")) -> UUID:
    """Acting user; a missing or malformed header is a validation error (400)."""
    return x_actor_id
