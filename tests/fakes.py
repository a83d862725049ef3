"""Test doubles and fixture constants shared by the test modules."""
from traffic_advisor.connectors.base import FleetDirectory
from traffic_advisor.errors import CollaboratorUnavailable

APP_ID = "app-1"
APP_NAME = "test-app-1"
SERVICE_ID = "service-1"
TELEMETRY_ID = f"{APP_NAME}-{SERVICE_ID}"
DOMAIN = f"{SERVICE_ID}.plt.local"


class FakeFleet(FleetDirectory):
    """In-memory fleet directory: ``{applicationId: {"name": ..., "services": [...]}}``."""

    name = "fake"

    def __init__(self, applications: dict, failing: set | None = None):
        self.applications = applications
        self.failing = failing or set()
        self.emitted: list[str] = []
        self.state_calls = 0

    def list_applications(self):
        return [{"id": app_id, "name": app["name"]} for app_id, app in self.applications.items()]

    def get_latest_application_state(self, application_id):
        self.state_calls += 1
        if application_id in self.failing:
            raise CollaboratorUnavailable(f"state for {application_id} unavailable")
        app = self.applications.get(application_id)
        return {"services": app["services"]} if app else None

    def emit_application_config(self, application_id):
        self.emitted.append(application_id)
