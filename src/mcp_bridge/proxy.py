"""Backing-API proxy.

Turns a tool's route alias and call arguments into a request against the
backing REST API, and the response into tool content.
"""

import json
import re
from typing import Any, Optional

from cms.base import API_ROOT, BackingApi, BackingApiRequest, ContentError
from shared.logging import get_logger
from shared.models import BackingApiAlias, Principal, ToolContent
from mcp_bridge.errors import BackingApiError

logger = get_logger(__name__)

PLACEHOLDER = re.compile(r"\{(\w+)\}")

GET_LIKE = frozenset({"GET", "HEAD"})


def placeholders(template: str) -> list[str]:
    return PLACEHOLDER.findall(template)


def substitute_route(template: str, arguments: dict[str, Any]) -> str:
    """Fill ``{name}`` placeholders from arguments, leaving unknown ones as is."""

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name in arguments:
            return str(arguments[name])
        return match.group(0)

    return PLACEHOLDER.sub(replace, template)


def normalize_route(route: str) -> str:
    """Prefix a route with the API root unless it already carries it."""
    route = "/" + route.lstrip("/")
    if route == API_ROOT or route.startswith(API_ROOT + "/"):
        return route
    return API_ROOT + route


def build_request(
    alias: BackingApiAlias,
    arguments: dict[str, Any],
    principal: Optional[Principal] = None
) -> BackingApiRequest:
    """
    Build the backing request for an aliased tool call.

    For GET and HEAD, arguments not consumed by a placeholder become the
    query string. Every other verb sends all arguments as a JSON body.
    """
    route = normalize_route(substitute_route(alias.route, arguments))

    if alias.method in GET_LIKE:
        used = set(placeholders(alias.route))
        query = {k: v for k, v in arguments.items() if k not in used}
        return BackingApiRequest(method=alias.method, route=route, query=query, principal=principal)

    return BackingApiRequest(
        method=alias.method,
        route=route,
        body=dict(arguments),
        headers={"Content-Type": "application/json"},
        principal=principal,
    )


class BackingApiProxy:
    """Forwards aliased tool calls to the backing API in-process."""

    def __init__(self, api: BackingApi) -> None:
        self.api = api

    def call(
        self,
        alias: BackingApiAlias,
        arguments: dict[str, Any],
        principal: Optional[Principal] = None
    ) -> ToolContent:
        request = build_request(alias, arguments, principal)

        logger.debug("Proxying to backing API", method=request.method, route=request.route)

        try:
            response = self.api.dispatch(request)
        except ContentError as e:
            raise BackingApiError(e.message, e.status, e.code) from e

        if response.is_error:
            logger.info(
                "Backing API returned an error",
                method=request.method,
                route=request.route,
                status=response.status,
                code=response.error_code
            )
            raise BackingApiError(response.error_message, response.status, response.error_code)

        return ToolContent.from_text(
            json.dumps(response.data, indent=4, ensure_ascii=False, default=str)
        )
