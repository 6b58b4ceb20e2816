"""CLI interface for the agent pipeline."""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .agent_selector import STAGE_NAMES, get_parallel_groups
from .deviation_handler import DeviationImpact
from .errors import CircuitOpenError, PipelineError
from .gates import PIPELINE_POINTS, GateMode, waive
from .intent_classifier import IntentType
from .models import AgentStatus, DeviationType, HandoffRequest, TaskValidation
from .orchestration import PipelineOrchestrator
from .session_store import SessionStore

console = Console()

# Windows-compatible symbols (cp1252 doesn't support Unicode checkmarks)
if sys.platform == "win32":
    SYM_OK = "[OK]"
    SYM_FAIL = "[X]"
else:
    SYM_OK = "✓"
    SYM_FAIL = "✗"

STATUS_COLORS = {
    AgentStatus.PENDING: "white",
    AgentStatus.IN_PROGRESS: "yellow",
    AgentStatus.COMPLETED: "green",
    AgentStatus.SKIPPED: "dim",
    AgentStatus.NEEDS_REVALIDATION: "magenta",
    AgentStatus.FAILED: "red",
}

VERDICT_COLORS = {
    "PASS": "green",
    "CONCERNS": "yellow",
    "FAIL": "red",
    "REVIEW": "magenta",
    "WAIVED": "cyan",
}

IMPACT_COLORS = {"low": "green", "medium": "yellow", "high": "red"}


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


def _print_impact(impact: DeviationImpact) -> None:
    color = IMPACT_COLORS.get(impact.impact, "white")
    console.print(f"[bold]Impact:[/bold] [{color}]{impact.impact}[/{color}]")
    console.print(f"[bold]Recommendation:[/bold] {impact.recommendation}")
    if impact.affected_agents:
        console.print(f"[bold]Affected agents:[/bold] {', '.join(impact.affected_agents)}")


@click.group()
@click.version_option(package_name="agent-pipeline")
def main():
    """Agent Pipeline - orchestration engine for multi-stage agent workflows."""
    pass


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.option('--brownfield', is_flag=True, help='Existing codebase (uses brownfield work understanding)')
@click.option('--force', is_flag=True, help='Replace an existing session')
def init(project_path: str, brownfield: bool, force: bool):
    """Initialize a pipeline session in PROJECT_PATH."""
    orchestrator = PipelineOrchestrator(project_path)
    try:
        session = orchestrator.init(is_greenfield=not brownfield, force=force)
    except PipelineError as e:
        _fail(f"{e}. Use --force to start over.")
        return

    console.print(f"[bold]Stages:[/bold] {len(session.agents)}")
    console.print(f"[bold]Session file:[/bold] {orchestrator.store.path}")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
def status(project_path: str):
    """Show the phase and the status of every stage."""
    orchestrator = PipelineOrchestrator(project_path)
    try:
        session = orchestrator.load()
    except PipelineError as e:
        _fail(str(e))
        return

    summary = orchestrator.summary()

    table = Table(title=f"Pipeline: {Path(project_path).resolve().name}")
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("Score", justify="right")

    for name, state in session.agents.items():
        color = STATUS_COLORS.get(state.status, "white")
        marker = f" {SYM_OK}" if state.status == AgentStatus.COMPLETED else ""
        score = f"{state.score:g}" if state.score is not None else "-"
        table.add_row(name, f"[{color}]{state.status.value}{marker}[/{color}]", score)

    console.print(table)
    console.print(
        f"\n[bold]Phase:[/bold] {summary.phase.value}  "
        f"[bold]Type:[/bold] {summary.project_type.value}  "
        f"[bold]Progress:[/bold] {summary.progress_percent}% "
        f"({summary.completed_count}/{summary.total_count})"
    )
    console.print(
        f"[bold]Current agent:[/bold] {summary.current_agent or '-'}  "
        f"[bold]Elapsed:[/bold] {summary.duration_formatted}"
    )
    if summary.mode_transitions or summary.deviations:
        console.print(
            f"[dim]{summary.mode_transitions} phase change(s), "
            f"{summary.deviations} deviation(s)[/dim]"
        )
    if summary.completed_at:
        console.print(f"[bold green]Pipeline complete[/bold green] at {summary.completed_at:%Y-%m-%d %H:%M}")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
def validate(project_path: str):
    """Check that the session file is readable and consistent."""
    result = SessionStore.for_project(project_path).validate()
    if result.valid:
        console.print(f"[green]{SYM_OK}[/green] {result.reason}")
    else:
        _fail(result.reason)


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('message')
def classify(project_path: str, message: str):
    """Classify MESSAGE into an intent."""
    result = PipelineOrchestrator(project_path).classify(message)
    console.print(f"[bold]Intent:[/bold] [cyan]{result.intent.value}[/cyan]")
    console.print(f"[bold]Confidence:[/bold] {result.confidence:.0%}")
    console.print(f"[dim]{result.reasoning}[/dim]")


@main.command('next')
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.option('--intent', type=click.Choice([i.value for i in IntentType]), default=IntentType.RESUME.value,
              help='Intent to select for (default: resume)')
def next_agent(project_path: str, intent: str):
    """Show which stage should run next."""
    orchestrator = PipelineOrchestrator(project_path)
    try:
        selection = orchestrator.select_next(intent)
        session = orchestrator.load()
    except PipelineError as e:
        _fail(str(e))
        return

    if selection.agent is None:
        console.print(f"[yellow]{selection.reason}[/yellow]")
        return

    console.print(f"[bold]Next agent:[/bold] [cyan]{selection.agent}[/cyan]")
    console.print(f"[dim]{selection.reason}[/dim]")
    if selection.parallel_group:
        console.print(f"[bold]Can run in parallel:[/bold] {', '.join(selection.parallel_group)}")

    groups = get_parallel_groups(session.completed_agents)
    if groups and not selection.parallel_group:
        console.print(f"[dim]Open parallel groups: {'; '.join(', '.join(g) for g in groups)}[/dim]")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('message')
def route(project_path: str, message: str):
    """Interpret MESSAGE as a deviation request or ordinary work."""
    orchestrator = PipelineOrchestrator(project_path)
    try:
        routed = orchestrator.route(message)
    except PipelineError as e:
        _fail(str(e))
        return

    if routed.deviation.is_deviation:
        detection = routed.deviation
        console.print(
            f"[bold yellow]Deviation:[/bold yellow] {detection.type.value} "
            f"({detection.confidence:.0%} confidence)"
        )
        if detection.target_stage:
            console.print(f"[bold]Target stage:[/bold] {detection.target_stage}")
        if routed.impact:
            _print_impact(routed.impact)
        console.print(f"[dim]Apply with: agent-pipeline deviate {project_path} {detection.type.value}[/dim]")
        return

    console.print(f"[bold]Intent:[/bold] [cyan]{routed.intent.intent.value}[/cyan]")
    if routed.selection and routed.selection.agent:
        console.print(f"[bold]Agent:[/bold] {routed.selection.agent} [dim]({routed.selection.reason})[/dim]")
    elif routed.selection:
        console.print(f"[yellow]{routed.selection.reason}[/yellow]")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('stage', type=click.Choice(STAGE_NAMES))
def start(project_path: str, stage: str):
    """Mark STAGE as the active stage."""
    try:
        PipelineOrchestrator(project_path).start(stage)
    except PipelineError as e:
        _fail(str(e))


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('stage', type=click.Choice(STAGE_NAMES))
@click.option('--score', type=float, help='Validation score for the stage (0-100)')
@click.option('--summary', default='', help='Handoff summary (records a handoff when given)')
@click.option('--output', 'outputs', multiple=True, help='Output produced by the stage (can specify multiple)')
@click.option('--criterion', 'criteria', multiple=True, help='Acceptance criterion (can specify multiple)')
@click.option('--unmet', multiple=True, help='Criterion that was not met (can specify multiple)')
@click.option('--blocker', 'blockers', multiple=True, help='Open blocker (can specify multiple)')
@click.option('--to', 'to_stage', type=click.Choice(STAGE_NAMES), help='Receiving stage (default: next in pipeline)')
def complete(
    project_path: str,
    stage: str,
    score: Optional[float],
    summary: str,
    outputs: tuple,
    criteria: tuple,
    unmet: tuple,
    blockers: tuple,
    to_stage: Optional[str],
):
    """Record that STAGE finished and advance the pipeline.

    With --summary a handoff is validated and written to the handoff log
    before the pipeline moves; a rejected handoff leaves the session as it
    was.
    """
    request = None
    if summary:
        request = HandoffRequest(
            from_stage=stage,
            to_stage=to_stage,
            validation=TaskValidation(valid=not unmet, score=score, unmet=list(unmet)),
            outputs=list(outputs),
            criteria=list(criteria) + [u for u in unmet if u not in criteria],
            summary=summary,
            blockers=list(blockers),
        )

    try:
        outcome = PipelineOrchestrator(project_path).complete(stage, request=request, score=score)
    except PipelineError as e:
        _fail(str(e))
        return

    if not outcome.success:
        _fail(f"Stage {stage} was not completed")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('deviation_type', type=click.Choice([t.value for t in DeviationType if t != DeviationType.NONE]))
@click.option('--target', help='Stage to roll back to or to skip')
@click.option('--add', 'added', multiple=True, help='Feature to add (scope change, can specify multiple)')
@click.option('--remove', 'removed', multiple=True, help='Feature to remove (scope change, can specify multiple)')
@click.option('--description', default='', help='What changed (priority change)')
@click.option('--affected', multiple=True, help='Stages a priority change touches (can specify multiple)')
@click.option('--yes', '-y', is_flag=True, help='Apply without asking for confirmation')
def deviate(
    project_path: str,
    deviation_type: str,
    target: Optional[str],
    added: tuple,
    removed: tuple,
    description: str,
    affected: tuple,
    yes: bool,
):
    """Apply a deviation: scope_change, rollback, skip, priority_change or restart."""
    details: dict = {}
    if target:
        details["stage" if deviation_type == DeviationType.SKIP.value else "target_stage"] = target
    if added:
        details["added_features"] = list(added)
    if removed:
        details["removed_features"] = list(removed)
    if description:
        details["description"] = description
    if affected:
        details["affected_stages"] = list(affected)

    orchestrator = PipelineOrchestrator(project_path)
    try:
        impact = orchestrator.assess_deviation(deviation_type, details)
        _print_impact(impact)

        if impact.requires_confirmation and not yes:
            if not click.confirm("\nApply this deviation?"):
                console.print("[yellow]Cancelled[/yellow]")
                return

        outcome = orchestrator.deviate(deviation_type, details)
    except PipelineError as e:
        _fail(str(e))
        return

    if not outcome.applied:
        _fail("Deviation was not applied")


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('pipeline_point', type=click.Choice(PIPELINE_POINTS))
@click.option('--human', is_flag=True, help='Human-in-the-loop: report a recommendation instead of deciding')
@click.option('--waive', 'waiver', default=None, help='Approve the gate whatever its verdict, recording this reason')
def gate(project_path: str, pipeline_point: str, human: bool, waiver: Optional[str]):
    """Evaluate the quality gate guarding PIPELINE_POINT."""
    mode = GateMode.HUMAN if human else GateMode.AUTONOMOUS
    try:
        result = PipelineOrchestrator(project_path).evaluate_gate(pipeline_point, mode)
    except CircuitOpenError as e:
        _fail(str(e))
        return

    if waiver is not None:
        try:
            result = waive(result, waiver)
        except ValueError as e:
            _fail(str(e))
            return

    table = Table(title=f"{result.gate_name} ({result.gate_id})", show_header=False)
    table.add_column("Criterion")
    table.add_column("Result", justify="center")
    for criterion in result.criteria_met:
        table.add_row(criterion, f"[green]{SYM_OK}[/green]")
    for criterion in result.criteria_unmet:
        table.add_row(criterion, f"[red]{SYM_FAIL}[/red]")
    console.print(table)

    color = VERDICT_COLORS.get(result.verdict.value, "white")
    console.print(f"\n[bold]Verdict:[/bold] [{color}]{result.verdict.value}[/{color}]  [bold]Score:[/bold] {result.score}")
    console.print(f"[bold]Recommendation:[/bold] {result.recommendation}")
    if result.waived_reason:
        console.print(f"[bold]Waived:[/bold] {result.waived_reason}")
    for warning in result.warnings:
        console.print(f"  [yellow]-[/yellow] {warning}")

    if not result.can_proceed:
        sys.exit(1)


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
def handoffs(project_path: str):
    """List the handoff log."""
    history = PipelineOrchestrator(project_path).handoff_history()
    if not history:
        console.print("[yellow]No handoffs recorded yet.[/yellow]")
        return

    table = Table(title="Handoffs")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Summary")

    for h in history:
        table.add_row(
            str(h.sequence),
            h.agent,
            h.to or "-",
            h.status.value,
            f"{h.score:g}" if h.score is not None else "-",
            h.summary[:60],
        )

    console.print(table)


@main.command()
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('stage', type=click.Choice(STAGE_NAMES))
def context(project_path: str, stage: str):
    """Show what the next stage gets to read about STAGE."""
    ctx = PipelineOrchestrator(project_path).handoff_context(stage)
    if ctx.is_empty:
        console.print(f"[yellow]Nothing recorded for {stage} yet.[/yellow]")
        return

    if ctx.handoff:
        console.print(f"[bold]Latest handoff:[/bold] #{ctx.handoff.sequence} -> {ctx.handoff.to_stage or '-'}")
        console.print(f"  {ctx.handoff.summary}")
        for key, value in ctx.handoff.decisions.items():
            console.print(f"  [dim]{key}:[/dim] {value}")
    for entry in ctx.memories:
        console.print(f"[cyan]{entry.category}[/cyan] ({entry.confidence}) {entry.content}")
    console.print(f"\n[dim]Sources: {'; '.join(ctx.sources)}[/dim]")


@main.command('rollback-check')
@click.argument('project_path', type=click.Path(exists=True, file_okay=False))
@click.argument('target', type=click.Choice(STAGE_NAMES))
def rollback_check(project_path: str, target: str):
    """Show what a rollback to TARGET would undo."""
    result = PipelineOrchestrator(project_path).rollback_check(target)
    if not result.possible:
        console.print(f"[yellow]{result.reason}[/yellow]")
        return

    console.print(f"[bold]{result.reason}[/bold]")
    for agent in result.affected_agents:
        console.print(f"  - {agent}")


if __name__ == '__main__':
    main()
