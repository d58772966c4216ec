"""Shared FastAPI dependencies."""

from fastapi import Request

from backend.app.services import RagServices


def get_services(request: Request) -> RagServices:
    """Services created by the application lifespan."""
    services: RagServices = request.app.state.services
    return services
