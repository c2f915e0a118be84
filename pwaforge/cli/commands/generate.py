"""``pwaforge generate`` / ``pwaforge rework`` — run a generation job.

The job runs on the JobRunner; its state changes are shown as they
happen and the outcome is printed as a panel.  With ``--serve`` the new
bundle is served until Ctrl-C.
"""

from __future__ import annotations

import typer
from rich.panel import Panel

from pwaforge.cli.commands._runtime import active_config, console
from pwaforge.cli.commands.serve import serve_until_interrupted
from pwaforge.core.job_runner import JobRunner, JobStatus
from pwaforge.core.pipeline import GenerationPipeline
from pwaforge.models.generation import GenerationKind, GenerationOutcome, GenerationRequest


def _run(request: GenerationRequest, *, rewrite: bool) -> GenerationOutcome | None:
    cfg = active_config()
    if not rewrite:
        cfg = cfg.model_copy(update={"prompt_rewrite_enabled": False})
    pipeline = GenerationPipeline.from_config(cfg)

    outcome: GenerationOutcome | None = None
    with JobRunner(pipeline, max_workers=cfg.max_workers) as runner:
        handle = runner.submit(request)
        try:
            with console.status("Queued...") as status:
                for update in runner.observe(handle):
                    if update.status == JobStatus.PROGRESS and update.state is not None:
                        status.update(update.state.value.replace("_", " ").capitalize() + "...")
                    if update.is_terminal:
                        outcome = update.outcome
        except KeyboardInterrupt:
            runner.cancel(handle)
            console.print("[yellow]Cancelling...[/yellow]")
            outcome = runner.result(handle)
    return outcome


def _report(outcome: GenerationOutcome | None) -> None:
    if outcome is None:
        console.print("[yellow]Generation cancelled.[/yellow]")
        raise typer.Exit(code=1)

    if outcome.success:
        lines = [
            f"[bold]Bundle:[/bold] {outcome.bundle_id}",
            f"[bold]Credential:[/bold] {outcome.credential_source.value if outcome.credential_source else '-'}",
            f"[bold]Parsed via:[/bold] {outcome.extraction_tier}",
            f"[bold]Attempts:[/bold] {outcome.attempts}",
        ]
        console.print(Panel("\n".join(lines), title="[green]Done[/green]", border_style="green"))
        return

    kind = outcome.error_kind.value if outcome.error_kind else "error"
    console.print(Panel(outcome.message, title=f"[red]Failed: {kind}[/red]", border_style="red"))
    raise typer.Exit(code=1)


def generate_cmd(
    prompt: str = typer.Argument(..., help="Description of the app to build."),
    name: str = typer.Option("Generated PWA", "--name", "-n", help="Display name stored with the bundle."),
    rewrite: bool = typer.Option(True, "--rewrite/--no-rewrite", help="Elaborate the prompt before generating."),
    serve: bool = typer.Option(False, "--serve", help="Serve the bundle after it is created."),
) -> None:
    """Generate a new app from a prompt."""
    outcome = _run(GenerationRequest(prompt=prompt, kind=GenerationKind.CREATE, name=name), rewrite=rewrite)
    _report(outcome)
    if serve and outcome is not None and outcome.bundle_id:
        serve_until_interrupted(outcome.bundle_id)


def rework_cmd(
    bundle_id: str = typer.Argument(..., help="Bundle to change."),
    prompt: str = typer.Argument(..., help="What to change."),
) -> None:
    """Apply a change request to an existing app (a snapshot is taken first)."""
    request = GenerationRequest(prompt=prompt, kind=GenerationKind.REWORK, target_bundle_id=bundle_id)
    _report(_run(request, rewrite=False))
