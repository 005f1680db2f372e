"""Request context helpers shared by the API blueprints.

Authentication is external: the gateway in front of the engine puts the
authenticated user id in ``X-User-Id``.
"""

from flask import abort, make_response, request

from docflow.utils.errors import E, api_error
from docflow.utils.helpers import parse_int


def current_actor_id(required: bool = True) -> int | None:
    """Acting user id from ``X-User-Id``; aborts with 401 when required and absent."""
    actor = parse_int(request.headers.get("X-User-Id"))
    if actor is None and required:
        abort(make_response(api_error(E.UNAUTHENTICATED, "X-User-Id header is required")))
    return actor


def request_meta() -> dict:
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip = forwarded.split(",")[0].strip() if forwarded else request.remote_addr
    return {"ip": ip, "workstation": request.headers.get("X-Workstation")}
