"""Reverse proxy IP extraction for FastAPI requests."""

from fastapi import Request


def get_client_ip(request: Request, trust_proxy: bool = False) -> str | None:
    """Extract the client IP used for rate limiting.

    Serverless platforms sit behind a proxy, so with ``trust_proxy`` the
    forwarding headers are read: X-Forwarded-For (first value) > X-Real-IP >
    direct IP. Without it, only the direct peer address is used.
    """
    direct_ip = request.client.host if request.client is not None else None

    if not trust_proxy:
        return direct_ip

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return direct_ip
