"""Rich views for team run progress."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.tree import Tree

from ..orchestration.models import OrchestrationRun, RunStatus, SpecialistStatus
from .utils import format_timestamp, truncate

STATUS_ICONS = {
	SpecialistStatus.PENDING: "[dim][ ][/dim]",
	SpecialistStatus.WORKING: "[yellow][~][/yellow]",
	SpecialistStatus.PAUSED: "[magenta][?][/magenta]",
	SpecialistStatus.COMPLETED: "[green][x][/green]",
}

RUN_STYLES = {
	RunStatus.IN_PROGRESS: "yellow",
	RunStatus.PAUSED: "magenta",
	RunStatus.COMPLETED: "green",
	RunStatus.FAILED: "red",
}


def render_run_progress(run: OrchestrationRun, console: Optional[Console] = None) -> None:
	"""Render a run as a Rich Tree of specialists."""
	console = console or Console()

	done = sum(1 for s in run.specialist_states if s.status == SpecialistStatus.COMPLETED)
	total = len(run.specialist_states)
	style = RUN_STYLES.get(run.status, "white")
	objective = run.lead_plan.objective if run.lead_plan else run.conversation_id

	tree = Tree(
		f"[bold]{objective}[/bold]  "
		f"[{style}]{run.status.value}[/{style}] [dim]({done}/{total} specialists)[/dim]"
	)

	assignments = {r.agent_name: r for r in run.lead_plan.roles} if run.lead_plan else {}
	for state in run.specialist_states:
		icon = STATUS_ICONS.get(state.status, "[ ]")
		branch = tree.add(f"{icon} [bold]{state.agent_name}[/bold] [dim]- {state.role}[/dim]")

		role = assignments.get(state.agent_name)
		if role and role.depends_on:
			branch.add(f"[dim]after: {', '.join(role.depends_on)}[/dim]")
		if state.interrupt_question:
			branch.add(f"[magenta]asks:[/magenta] {state.interrupt_question}")
		if state.current_output:
			branch.add(truncate(state.current_output))
		if state.error:
			branch.add(f"[red]error:[/red] {truncate(state.error)}")

	console.print(tree)


def render_run_summary(run: OrchestrationRun, console: Optional[Console] = None) -> None:
	"""Render a summary panel for a run."""
	console = console or Console()

	lines = []
	if run.lead_plan:
		lines.append(f"[bold]Objective:[/bold] {run.lead_plan.objective}")
	if run.lead:
		lines.append(f"[bold]Lead:[/bold] {run.lead.name} ({run.lead.role})")
	lines.append(f"[bold]Status:[/bold] {run.status.value}")
	lines.append(f"[bold]Updated:[/bold] {format_timestamp(run.updated_at)}")

	paused = run.paused_specialists()
	if paused:
		lines.append("")
		lines.append("[bold]Waiting for answers:[/bold]")
		for s in paused:
			lines.append(f"  - {s.agent_name}: {s.interrupt_question}")

	if run.lead_plan and run.lead_plan.analysis:
		lines.append("")
		lines.append(f"[bold]Analysis:[/bold] {truncate(run.lead_plan.analysis, 200)}")

	if run.final_output:
		lines.append("")
		lines.append(f"[bold]Deliverable:[/bold] {len(run.final_output)} chars")

	console.print(Panel("\n".join(lines), title=f"Run: {run.conversation_id}", border_style="cyan"))
