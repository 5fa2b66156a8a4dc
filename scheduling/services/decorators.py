"""Decorators for scheduling service methods."""

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

from django.db import InterfaceError, OperationalError

from scheduling.exceptions import NotAuthenticatedError, StoreUnavailableError


logger = logging.getLogger(__name__)


def requires_authentication(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator that ensures the service is bound to a user before calling the method.

    Raises:
        NotAuthenticatedError: If `authenticate` wasn't called with an authenticated user.
    """

    @wraps(func)
    def wrapper(self, *args: Any, **kwargs: Any) -> Any:
        user = getattr(self, "user", None)
        if user is None or not user.is_authenticated:
            raise NotAuthenticatedError()
        return func(self, *args, **kwargs)

    return wrapper


def translate_store_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator that turns connection level database failures into `StoreUnavailableError`.

    Integrity errors and other programming errors are not translated, they point to bugs
    rather than to an unavailable store.
    """

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.exception("Task store unavailable while running %s", func.__qualname__)
            raise StoreUnavailableError() from e

    return wrapper
