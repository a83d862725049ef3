"""Error taxonomy shared by the ingestion gateway, lifecycle manager and HTTP layer.

Every error carries a stable ``code`` (rendered in HTTP bodies) and the HTTP status the
boundary maps it to. Collaborator failures are the only retryable class.
"""
from __future__ import annotations


class TrafficAdvisorError(Exception):
    code = "TrafficAdvisorError"
    status_code = 500

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "statusCode": self.status_code}


# Input validation (400)
class MissingApplicationId(TrafficAdvisorError):
    code = "MissingApplicationId"
    status_code = 400

    def __init__(self):
        super().__init__("Missing application id")


class MissingRequestUrl(TrafficAdvisorError):
    code = "MissingRequestUrl"
    status_code = 400

    def __init__(self):
        super().__init__("Missing request url")


class MissingRequestHeaders(TrafficAdvisorError):
    code = "MissingRequestHeaders"
    status_code = 400

    def __init__(self):
        super().__init__("Missing request headers")


class MissingResponseHeaders(TrafficAdvisorError):
    code = "MissingResponseHeaders"
    status_code = 400

    def __init__(self):
        super().__init__("Missing response headers")


class FailedToParseJsonHeader(TrafficAdvisorError):
    code = "FailedToParseJsonHeader"
    status_code = 400

    def __init__(self, header: str | None):
        super().__init__(f"Failed to parse JSON header: {header}")


# Not found (404)
class RecommendationNotFound(TrafficAdvisorError):
    code = "RecommendationNotFound"
    status_code = 404

    def __init__(self, recommendation_id: str):
        super().__init__(f"Recommendation with id {recommendation_id} not found")


class RecommendationRouteNotFound(TrafficAdvisorError):
    code = "RecommendationRouteNotFound"
    status_code = 404

    def __init__(self, route_id: str):
        super().__init__(f"Recommendation route with id {route_id} not found")


class DomainNotFound(TrafficAdvisorError):
    code = "DomainNotFound"
    status_code = 404

    def __init__(self, domain: str):
        super().__init__(f"Internal service not found for domain {domain}")


# State machine violations (400)
class InvalidStatus(TrafficAdvisorError):
    code = "InvalidStatus"
    status_code = 400

    def __init__(self, status: str):
        super().__init__(f"Invalid recommendation status: {status}")


class InvalidStatusFlow(TrafficAdvisorError):
    code = "InvalidStatusFlow"
    status_code = 400

    def __init__(self, status: str, current_status: str):
        super().__init__(f"Can not change recommendation status from {current_status} to {status}")
        self.status = status
        self.current_status = current_status


# Workflow preconditions (400)
class NoRecommendationToApply(TrafficAdvisorError):
    code = "NoRecommendationToApply"
    status_code = 400

    def __init__(self):
        super().__init__("There is no recommendation to apply")


# Collaborator failures (retryable)
class CollaboratorUnavailable(TrafficAdvisorError):
    code = "CollaboratorUnavailable"
    status_code = 503


class GenerationCancelled(TrafficAdvisorError):
    code = "GenerationCancelled"
    status_code = 409

    def __init__(self):
        super().__init__("Recommendation generation was cancelled")


class GenerationInProgress(TrafficAdvisorError):
    code = "GenerationInProgress"
    status_code = 409

    def __init__(self):
        super().__init__("A recommendation generation pass is already running")
