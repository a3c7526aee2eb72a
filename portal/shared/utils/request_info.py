# portal/shared/utils/request_info.py

from starlette.requests import Request

UNKNOWN = "unknown"


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer, else 'unknown'."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


def user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or UNKNOWN
