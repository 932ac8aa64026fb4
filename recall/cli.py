"""[Layer: Presentation] Typer CLI Commands."""

import time
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as get_package_version
from typing import NoReturn, Optional

import typer
from pydantic import ValidationError

from recall.core.engine import Engine
from recall.core.errors import SyncError, TopicNotFoundError
from recall.models import SyncOutcome, SyncPreferences, SyncReport, Topic


def _get_version() -> str:
    """Get version from package metadata (single source of truth: pyproject.toml)."""
    try:
        return get_package_version("recall-tracker")
    except PackageNotFoundError:
        return "0.0.0-dev"


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"recall-tracker {_get_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="recall",
    help="Local-first spaced-repetition tracker with offline-first backup sync.",
)


def _fail(message: str) -> NoReturn:
    typer.echo(message, err=True)
    raise typer.Exit(1)


def _resolve_id(engine: Engine, prefix: str) -> str:
    """Expand a topic id prefix to the full id."""
    if engine.topics.get(prefix) is not None:
        return prefix
    matches = [t.id for t in engine.topics.get_all() if t.id.startswith(prefix)]
    if not matches:
        _fail(f"Topic with id '{prefix}' not found")
    if len(matches) > 1:
        _fail(f"Ambiguous id '{prefix}' matches {len(matches)} topics")
    return matches[0]


def _parse_when(value: str) -> datetime:
    """Parse an ISO date or datetime; naive values are local time."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Expected ISO date or datetime, got '{value}'")
    return parsed.astimezone()


def _format_topic(topic: Topic) -> str:
    due = topic.next_due_at.astimezone().strftime("%Y-%m-%d %H:%M")
    pin = " [manual]" if topic.uses_manual_schedule else ""
    tags = f" #{' #'.join(topic.tags)}" if topic.tags else ""
    return f"  {topic.id[:8]}  {topic.title[:50]}  (stage {topic.stage}, due {due}){pin}{tags}"


def _echo_topics(heading: str, topics: list[Topic], empty: str) -> None:
    if not topics:
        typer.echo(empty)
        return
    typer.echo(f"\n{heading} ({len(topics)}):\n")
    for topic in topics:
        typer.echo(_format_topic(topic))


def _echo_report(report: SyncReport) -> None:
    if report.outcome == SyncOutcome.SKIPPED:
        typer.echo("Sync skipped: conditions not met (see log for the reason).")
        return
    if report.outcome == SyncOutcome.ALREADY_SYNCING:
        typer.echo("A sync is already in progress.")
        return
    typer.echo(
        f"Sync {report.outcome.value}: {report.succeeded} succeeded, "
        f"{report.failed} failed, {report.abandoned} abandoned"
    )
    if report.backup_uploaded:
        typer.echo("Backup uploaded.")
    if report.error:
        typer.echo(f"Error: {report.error}")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Recall: review what you learn on a 1/3/7/14/30 day ladder.

    Run without a command to list topics due now.
    """
    if ctx.invoked_subcommand is None:
        due()


@app.command()
def add(
    title: str = typer.Argument(..., help="Topic title"),
    tags: Optional[str] = typer.Option(None, "--tags", "-t", help="Comma-separated tags"),
) -> None:
    """Add a topic; its first review is due tomorrow."""
    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else []
    try:
        topic = Engine().scheduler.create_topic(title, tag_list)
    except ValueError as e:
        _fail(str(e))
    typer.echo(f"Added: {topic.title} ({topic.id[:8]})")
    typer.echo(f"First review: {topic.next_due_at.astimezone():%Y-%m-%d}")


@app.command()
def due() -> None:
    """List topics due now (overdue included)."""
    _echo_topics("Due", Engine().scheduler.get_due(), "Nothing due. Nice work.")


@app.command()
def upcoming(
    days: int = typer.Option(7, "--days", "-d", help="Look-ahead window in days"),
) -> None:
    """List topics due within the next few days."""
    _echo_topics(
        f"Upcoming in {days} days",
        Engine().scheduler.get_upcoming(window_days=days),
        "Nothing scheduled in that window.",
    )


@app.command()
def overdue() -> None:
    """List topics due before today."""
    _echo_topics("Overdue", Engine().scheduler.get_overdue(), "No overdue topics.")


@app.command(name="list")
def list_topics() -> None:
    """List every topic."""
    _echo_topics("Topics", Engine().topics.get_all(), "No topics yet. Use 'recall add' to start.")


@app.command()
def review(
    topic_id: str = typer.Argument(..., help="Topic id (or unique prefix)"),
    auto: bool = typer.Option(
        False, "--auto", help="Release a manual schedule and advance the stage"
    ),
) -> None:
    """Mark a topic reviewed and schedule its next review."""
    engine = Engine()
    try:
        topic = engine.review(_resolve_id(engine, topic_id), return_to_automatic=auto)
    except TopicNotFoundError as e:
        _fail(str(e))
    typer.echo(f"Reviewed: {topic.title}")
    typer.echo(
        f"Stage {topic.stage} ({engine.scheduler.stage_description(topic.stage)}), "
        f"next review {topic.next_due_at.astimezone():%Y-%m-%d}"
    )


@app.command()
def reset(topic_id: str = typer.Argument(..., help="Topic id (or unique prefix)")) -> None:
    """Send a topic back to stage 0, due tomorrow."""
    engine = Engine()
    try:
        topic = engine.scheduler.reset_topic(_resolve_id(engine, topic_id))
    except TopicNotFoundError as e:
        _fail(str(e))
    typer.echo(f"Reset: {topic.title} (due {topic.next_due_at.astimezone():%Y-%m-%d})")


@app.command()
def reschedule(
    topic_id: str = typer.Argument(..., help="Topic id (or unique prefix)"),
    when: str = typer.Argument(..., help="ISO date or datetime, e.g. 2024-03-01T09:00"),
    manual: bool = typer.Option(
        True, "--manual/--auto", help="Pin the date, or move it once and keep the ladder"
    ),
) -> None:
    """Move a topic's next review to a specific time."""
    engine = Engine()
    target = _parse_when(when)
    try:
        topic = engine.scheduler.reschedule_to(_resolve_id(engine, topic_id), target, manual)
    except TopicNotFoundError as e:
        _fail(str(e))
    mode = "manual" if topic.uses_manual_schedule else "automatic"
    typer.echo(f"Rescheduled: {topic.title} -> {target:%Y-%m-%d %H:%M} ({mode})")


@app.command()
def unschedule(
    topic_id: str = typer.Argument(..., help="Topic id (or unique prefix)"),
    keep_date: bool = typer.Option(
        False, "--keep-date", help="Keep the current due date instead of recomputing"
    ),
) -> None:
    """Clear a manual schedule and return to the ladder."""
    engine = Engine()
    try:
        topic = engine.scheduler.clear_manual_schedule(
            _resolve_id(engine, topic_id), recalculate=not keep_date
        )
    except TopicNotFoundError as e:
        _fail(str(e))
    typer.echo(f"Automatic: {topic.title} (due {topic.next_due_at.astimezone():%Y-%m-%d})")


@app.command()
def delete(
    topic_id: str = typer.Argument(..., help="Topic id (or unique prefix)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a topic."""
    engine = Engine()
    full_id = _resolve_id(engine, topic_id)
    if not yes and not typer.confirm(f"Delete topic {full_id[:8]}?"):
        raise typer.Exit()
    try:
        engine.scheduler.delete_topic(full_id)
    except TopicNotFoundError as e:
        _fail(str(e))
    typer.echo(f"Deleted: {full_id[:8]}")


@app.command()
def stats() -> None:
    """Show scheduling statistics."""
    data = Engine().scheduler.scheduling_stats()
    typer.echo(f"Topics:          {data['total_topics']}")
    typer.echo(f"Due today:       {data['due_today']}")
    typer.echo(f"Overdue:         {data['overdue']}")
    typer.echo(f"Next 7 days:     {data['upcoming_7_days']}")
    typer.echo(f"Total reviews:   {data['total_reviews']}")
    typer.echo(f"Average reviews: {data['average_reviews']}")
    typer.echo(f"Manual:          {data['manual_schedules']}")
    if data["stage_distribution"]:
        typer.echo("\nStages:")
        for stage, count in data["stage_distribution"].items():
            typer.echo(f"  {stage}: {count}")


@app.command()
def sync(
    incremental: bool = typer.Option(
        False, "--incremental", "-i", help="Upload only topics changed since the last run"
    ),
) -> None:
    """Run one sync pass now (subject to battery, network and quiet hours)."""
    orchestrator = Engine().orchestrator
    report = orchestrator.perform_incremental_sync() if incremental else orchestrator.perform_sync()
    _echo_report(report)
    if report.outcome == SyncOutcome.FAILED:
        raise typer.Exit(1)


@app.command(name="sync-status")
def sync_status() -> None:
    """Show sync bookkeeping and whether a sync would run now."""
    engine = Engine()
    status = engine.queue.read_status()

    def _fmt(dt: datetime) -> str:
        if dt.timestamp() <= 0:
            return "never"
        return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")

    typer.echo(f"Last attempt:    {_fmt(status.last_sync_attempt_at)}")
    typer.echo(f"Last success:    {_fmt(status.last_successful_sync_at)}")
    typer.echo(f"Pending:         {status.pending_count}")
    typer.echo(f"Syncing:         {'yes' if status.is_syncing else 'no'}")
    typer.echo(f"Authenticated:   {'yes' if engine.backend.is_authenticated() else 'no'}")
    typer.echo(f"Would sync now:  {'yes' if engine.orchestrator.should_sync() else 'no'}")


@app.command()
def queue() -> None:
    """List pending sync operations in processing order."""
    items = Engine().queue.peek_pending()
    if not items:
        typer.echo("Sync queue is empty.")
        return
    typer.echo(f"\nPending operations ({len(items)}):\n")
    for item in items:
        topic = item.payload.get("topic_id", "")
        error = f"  last error: {item.last_error}" if item.last_error else ""
        typer.echo(
            f"  #{item.id} {item.kind.value} {topic[:8]} "
            f"(priority {item.priority}, retries {item.retry_count}){error}"
        )


@app.command()
def backups() -> None:
    """List full backups on the remote, newest first."""
    engine = Engine()
    if not engine.backend.is_authenticated():
        _fail("Remote backend is not available.")
    items = engine.backups.list_backups()
    if not items:
        typer.echo("No backups yet. Run 'recall sync' to create one.")
        return
    typer.echo(f"\nBackups ({len(items)}):\n")
    for blob in items:
        typer.echo(
            f"  {blob.id}  {blob.created_at.astimezone():%Y-%m-%d %H:%M}  {blob.size_formatted}"
        )


@app.command()
def restore(
    blob_id: str = typer.Argument(..., help="Backup id as shown by 'recall backups'"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Restore topics from a backup (overwrites topics with the same id)."""
    prompt = f"Restore {blob_id}? Local topics with the same id are replaced."
    if not yes and not typer.confirm(prompt):
        raise typer.Exit()
    try:
        count = Engine().backups.restore(blob_id)
    except SyncError as e:
        _fail(str(e))
    typer.echo(f"Restored {count} topics from {blob_id}")


@app.command()
def prefs() -> None:
    """Show sync preferences."""
    for name, value in Engine().sync_preferences().model_dump().items():
        typer.echo(f"{name}: {value}")


@app.command(name="pref-set")
def pref_set(
    key: str = typer.Argument(..., help="Preference name, e.g. wifi_only"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Change one sync preference."""
    if key not in SyncPreferences.model_fields:
        _fail(f"Unknown preference '{key}'. Known: {', '.join(SyncPreferences.model_fields)}")
    engine = Engine()
    current = engine.sync_preferences()
    try:
        updated = SyncPreferences.model_validate({**current.model_dump(), key: value})
    except ValidationError as e:
        _fail(f"Invalid value for {key}: {e.errors()[0]['msg']}")
    engine.preferences.save_sync_preferences(updated)
    typer.echo(f"{key} = {getattr(updated, key)}")


@app.command()
def watch() -> None:
    """Run periodic sync in the foreground until interrupted."""
    engine = Engine()
    report = engine.sync_on_resume()
    if report is not None:
        _echo_report(report)
    runner = engine.periodic_runner()
    runner.start()
    typer.echo(f"Syncing every {engine.sync_preferences().sync_interval_hours}h. Ctrl-C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        runner.stop()
        typer.echo("\nStopped.")


@app.command()
def version() -> None:
    """Show version."""
    typer.echo(f"recall-tracker {_get_version()}")
