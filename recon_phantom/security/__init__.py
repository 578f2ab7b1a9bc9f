from .rate_limiter import AsyncTokenBucket, enforce_rate_limit

__all__ = ['AsyncTokenBucket', 'enforce_rate_limit']
