"""
Wan Video Generator Core Components

Provides foundational infrastructure for the generation service:
- Configuration loaded from the environment
- Circuit breaker for provider resilience
- Lifecycle error taxonomy
"""

from .circuit_breaker import CircuitBreaker, CircuitState
from .config import Config, get_config

__all__ = ["CircuitBreaker", "CircuitState", "Config", "get_config"]
