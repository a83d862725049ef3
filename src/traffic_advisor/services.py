"""Process-wide service objects: fleet client, domain directory and traffic gateway.

Built lazily on first use. Tests install their own through ``override_fleet`` (and the redis /
engine overrides) before anything resolves them.
"""
from __future__ import annotations
from traffic_advisor.connectors.base import FleetDirectory
from traffic_advisor.connectors.control_plane import ControlPlaneClient
from traffic_advisor.domains import DomainDirectory
from traffic_advisor.ingestion import TrafficGateway

_fleet: FleetDirectory | None = None
_gateway: TrafficGateway | None = None


def get_fleet() -> FleetDirectory:
    global _fleet
    if _fleet is None:
        _fleet = ControlPlaneClient()
    return _fleet


def get_gateway() -> TrafficGateway:
    global _gateway
    if _gateway is None:
        _gateway = TrafficGateway(DomainDirectory(get_fleet()))
    return _gateway


def override_fleet(fleet: FleetDirectory | None):  # test helper
    global _fleet, _gateway
    _fleet = fleet
    _gateway = None
