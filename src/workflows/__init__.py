from workflows.factory import Station, create_station_from_config
from workflows.orchestrator import ProductionOrchestrator

__all__ = ["Station", "create_station_from_config", "ProductionOrchestrator"]
