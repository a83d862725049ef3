"""Top-level package for traffic_advisor.

HTTP caching-policy inference: traffic ingestion, route scoring, the recommendation review
workflow and the interceptor config compiler.
"""

__all__ = ["config", "errors", "models", "tasks"]
