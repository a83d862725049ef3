from __future__ import annotations
import re

_PARAM_RE = re.compile(r":([a-zA-Z0-9_-]+)")


def get_parent_route(route: str) -> str | None:
    """Strip a trailing dynamic segment: ``/products/:id`` -> ``/products``.

    Routes ending in a static or empty segment have no parent.
    """
    parts = route.split("/")
    if len(parts) < 2 or not parts[-1].startswith(":"):
        return None
    return "/".join(parts[:-1]) or "/"


def parse_path_params(url_path: str, route: str) -> dict[str, str]:
    params: dict[str, str] = {}
    url_parts = url_path.split("/")
    for i, part in enumerate(route.split("/")):
        if part.startswith(":") and i < len(url_parts):
            params[part[1:]] = url_parts[i]
    return params


def generate_cache_tag(telemetry_id: str, route: str) -> str:
    """Build the interceptor cache-tag expression for a route.

    Static parts are quoted, dynamic segments reference the request params:
    ``/products/:id`` -> ``'svc-products-' + .params["id"]``.
    """
    route = route.removeprefix("/").removesuffix("/").replace("*", ":wildcard")
    matches = list(_PARAM_RE.finditer(route))
    ends_with_param = bool(matches) and matches[-1].end() == len(route)

    def _replace(m: re.Match) -> str:
        replacement = f"' + .params[\"{m.group(1)}\"]"
        return replacement if m.end() == len(route) else replacement + " + '"

    tag = f"'{telemetry_id}-" + _PARAM_RE.sub(_replace, route).replace("/", "-")
    if not ends_with_param:
        tag += "'"
    return tag
