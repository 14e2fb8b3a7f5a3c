"""
Shared FastAPI dependencies for the routers.
"""

from contextlib import contextmanager

from fastapi import HTTPException, Request

from labsync.container import Container
from labsync.errors import LLMError, NotFoundError, ValidationError


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return container


@contextmanager
def http_errors():
    """Map pipeline errors onto HTTP status codes."""
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LLMError as e:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {e}")
