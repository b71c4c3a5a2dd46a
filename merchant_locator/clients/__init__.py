"""Client singletons and call wrappers for the place-search provider."""
from merchant_locator.clients.kakao_client import KakaoLocalClient
from merchant_locator.clients.retry import CircuitBreaker, with_retry

__all__ = ["KakaoLocalClient", "CircuitBreaker", "with_retry"]
