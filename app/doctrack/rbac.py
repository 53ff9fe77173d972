from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import abort, g

from app.doctrack.models import User

ADMINISTRATORS = "Administrators"
PROGRAM_REVIEW_SUBCOMMITTEE = "Program Review Subcommittee"


def user_in_groups(user: User | None, group_names: Iterable[str]) -> bool:
    if not user or not user.is_active:
        return False
    wanted = set(group_names)
    return any(group.name in wanted for group in user.groups)


def allow_groups(group_names: Iterable[str]) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    names = tuple(group_names)

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401
            if not user or not user.is_active:
                abort(401)
            # Authenticated but in none of the groups → 403
            if not user_in_groups(user, names):
                g.missing_groups = names
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
