"""Translate service exceptions into HTTP errors for the routers."""
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException

from bracketry.services.draw_service import StaleDrawStepError
from bracketry.services.repository import NotFoundError


@contextmanager
def service_errors() -> Iterator[None]:
    """NotFoundError -> 404, StaleDrawStepError -> 409, other ValueError -> 422."""
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except StaleDrawStepError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
