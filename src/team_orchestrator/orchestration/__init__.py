"""Orchestration module - Persisted team runs, specialist turns and coordination."""

from .coordinator import TeamCoordinator
from .models import (
	LeadPlan,
	OrchestrationRun,
	PlanRole,
	RunStatus,
	SpecialistState,
	SpecialistStatus,
	TeamMember,
)
from .runner import CancelScope, SpecialistRunner, TurnOutcome
from .store import OrchestrationStore

__all__ = [
	"TeamMember",
	"PlanRole",
	"LeadPlan",
	"SpecialistState",
	"SpecialistStatus",
	"OrchestrationRun",
	"RunStatus",
	"OrchestrationStore",
	"SpecialistRunner",
	"CancelScope",
	"TurnOutcome",
	"TeamCoordinator",
]
