from fastapi import Request

from ..services.sessions import SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    """The registry created by the application lifespan."""
    return request.app.state.registry
