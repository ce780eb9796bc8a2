from fastapi import Request

from app.services.container import PixServices


def get_services(request: Request) -> PixServices:
    """Services container built at startup and kept on ``app.state``."""
    return request.app.state.services
