"""
Redis-based rate limiting for API endpoints.
Implements a fixed window counter per caller and endpoint.
"""
import logging
from functools import wraps

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

_redis_client = None
_redis_checked = False


def get_redis_client():
    """
    Return a connected Redis client, or None if Redis is unreachable.

    The connection is attempted once per process.
    """
    global _redis_client, _redis_checked
    if _redis_checked:
        return _redis_client

    _redis_checked = True
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2
        )
        client.ping()
        _redis_client = client
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning(f"Redis connection failed: {e}. Rate limiting will be disabled.")
        _redis_client = None
    return _redis_client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', 'unknown')
    return ip


def get_caller_key(request):
    """Authenticated callers are limited per user, anonymous ones per IP."""
    user = getattr(request, 'user', None)
    if user is not None and user.is_authenticated:
        return f"user:{user.pk}"
    return f"ip:{get_client_ip(request)}"


def rate_limit(max_requests: int = 20, window_seconds: int = 60):
    """
    Redis-based rate limiting decorator for DRF view methods.

    Args:
        max_requests: Maximum number of requests allowed in the window
        window_seconds: Time window in seconds

    Usage:
        @rate_limit(10, 60)  # 10 orders per minute
        def create(self, request, *args, **kwargs):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(self, request, *args, **kwargs):
            if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
                return view_func(self, request, *args, **kwargs)

            client = get_redis_client()
            if client is None:
                return view_func(self, request, *args, **kwargs)

            try:
                key = f"rate_limit:{view_func.__name__}:{get_caller_key(request)}"

                current_count = client.incr(key)
                if current_count == 1:
                    client.expire(key, window_seconds)
                ttl = client.ttl(key)

                if current_count > max_requests:
                    logger.warning(f"Rate limit exceeded for {key}")
                    return Response(
                        {
                            'error': 'rate_limited',
                            'detail': f'Maximum {max_requests} requests per {window_seconds} seconds allowed.',
                            'retryable': True,
                            'retry_after': ttl
                        },
                        status=status.HTTP_429_TOO_MANY_REQUESTS,
                        headers={
                            'X-RateLimit-Limit': str(max_requests),
                            'X-RateLimit-Remaining': '0',
                            'X-RateLimit-Reset': str(ttl),
                            'Retry-After': str(ttl)
                        }
                    )
            except redis.RedisError as e:
                logger.error(f"Redis error in rate limiting: {e}")
                # Fail open
                return view_func(self, request, *args, **kwargs)

            response = view_func(self, request, *args, **kwargs)
            response['X-RateLimit-Limit'] = str(max_requests)
            response['X-RateLimit-Remaining'] = str(max(0, max_requests - current_count))
            response['X-RateLimit-Reset'] = str(ttl)
            return response

        return wrapper
    return decorator
