"""Turn orchestration runtime."""

from .orchestrator import OrchestratorConfig, OrchestratorState, TurnOrchestrator

__all__ = ["OrchestratorConfig", "OrchestratorState", "TurnOrchestrator"]
