"""CLI for inspecting a decision event store."""

import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .analyzer import DecisionAnalyzer
from .events import EventFilter, SQLiteEventStore
from .export import build_research_export
from .models import AnalyticsQuery, AnalyzerConfig, DateRange, DecisionEvent, ExportFilters, QueryFilters
from .query import QueryEngine
from .timeutil import format_relative_time, now_ms, parse_time_reference_ms

console = Console()


def _dump(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _time_ms(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return parse_time_reference_ms(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _store(ctx: click.Context) -> SQLiteEventStore:
    store = SQLiteEventStore(ctx.obj["db_path"])
    ctx.call_on_close(store.close)
    return store


@click.group()
@click.option(
    "--db", "db_path",
    envvar="GAMELYTICS_DB",
    type=click.Path(path_type=Path),
    default=Path("gamelytics.db"),
    show_default=True,
    help="Path to the event database",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, db_path, verbose):
    """Gamelytics - cross-game decision analytics."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path


@cli.command()
@click.argument("source", type=click.File("r"))
@click.pass_context
def ingest(ctx, source):
    """Append events from a JSON-lines file ('-' for stdin)."""
    events = []
    for line_no, line in enumerate(source, start=1):
        if not line.strip():
            continue
        try:
            events.append(DecisionEvent.model_validate_json(line))
        except ValidationError as e:
            raise click.ClickException(f"line {line_no}: {e}") from e

    _store(ctx).append_batch(events)
    console.print(f"[green]✓[/green] Ingested {len(events)} events")


@cli.command()
@click.option("--user", "user_id", help="Only this user")
@click.option("--game", "game_id", help="Only this game")
@click.option("--session", "session_id", help="Only this session")
@click.option("--since", help="Start time (e.g. '2 days ago', '2025-01-15')")
@click.option("--limit", "-n", default=20, show_default=True, help="Most recent N events")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def log(ctx, user_id, game_id, session_id, since, limit, as_json):
    """Show recent decision events."""
    events = _store(ctx).query(EventFilter(
        user_id=user_id, game_id=game_id, session_id=session_id, start=_time_ms(since),
    ))
    events = list(reversed(events[-limit:] if limit else events))

    if as_json:
        _dump([e.model_dump(mode="json") for e in events])
        return
    if not events:
        console.print("No events found.")
        return

    now = now_ms()
    table = Table(title="Decision Events")
    for column in ("When", "ID", "User", "Game", "Action", "R-type", "T-type", "Think (ms)"):
        table.add_column(column)
    for e in events:
        table.add_row(
            format_relative_time(e.timestamp, now), e.id[:8], e.user_id, e.game_id,
            e.chosen_action, e.r_type, e.t_type, str(e.thinking_time_ms),
        )
    console.print(table)


@cli.command()
@click.option("--game", "game_id", help="Only events from this game")
@click.option("--min-occurrences", type=click.IntRange(min=1), help="Minimum occurrences to report")
@click.option("--limit", "-n", default=20, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def patterns(ctx, game_id, min_occurrences, limit, as_json):
    """List recurring decision patterns."""
    config = AnalyzerConfig(min_occurrences=min_occurrences) if min_occurrences else AnalyzerConfig()
    found = DecisionAnalyzer(config).identify_patterns(_store(ctx).query(EventFilter(game_id=game_id)))
    found = found[:limit]

    if as_json:
        _dump([p.model_dump(mode="json") for p in found])
        return
    if not found:
        console.print("No patterns found.")
        return

    table = Table(title="Decision Patterns")
    for column in ("Sequence", "Occurrences", "Games", "Avg think (ms)", "Error rate", "Transfer"):
        table.add_column(column)
    for p in found:
        table.add_row(
            " → ".join(p.r_type_sequence),
            str(p.occurrences),
            ", ".join(f"{g} ({v:.2f})" for g, v in p.game_prevalence.items()),
            f"{p.average_thinking_time:.0f}",
            f"{p.error_rate:.2f}" if p.ground_truth_samples else "-",
            f"{p.transfer_potential:.2f}",
        )
    console.print(table)


@cli.command()
@click.argument("user_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def profile(ctx, user_id, as_json):
    """Show a user's cognitive profile."""
    result = DecisionAnalyzer().profile_for(_store(ctx), user_id)

    if as_json:
        _dump(result.model_dump(mode="json"))
        return
    if result.sample_size == 0:
        console.print(f"No decisions recorded for {user_id}.")
        return

    console.print(f"[bold]{user_id}[/bold] ({result.sample_size} decisions)")
    console.print(f"  Strengths:  {', '.join(result.r_type_strengths) or '-'}")
    console.print(f"  Weaknesses: {', '.join(result.r_type_weaknesses) or '-'}")
    console.print(f"  Preferred T-type: {result.preferred_t_type} (flexibility {result.t_type_flexibility:.2f})")
    console.print(f"  Cross-game transfer: {result.cross_game_transfer_score:.2f}")
    console.print(f"  R-type generalization: {result.r_type_generalization_score:.2f}")

    table = Table(title="Mastery by game")
    for column in ("Game", "R-type", "Level", "Score", "Confidence", "Samples", "Trend"):
        table.add_column(column)
    for game_id, game in result.game_profiles.items():
        for r_type, mastery in game.r_type_mastery.items():
            table.add_row(
                game_id, r_type, mastery.level.value, f"{mastery.score:.2f}",
                f"{mastery.confidence:.2f}", str(mastery.sample_size), game.skill_trend,
            )
    console.print(table)


@cli.command()
@click.argument("source_game")
@click.argument("target_game")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def transfer(ctx, source_game, target_game, as_json):
    """Measure transfer learning from one game to another."""
    result = DecisionAnalyzer().measure_transfer_learning(
        _store(ctx).read_all(), source_game, target_game
    )

    if as_json:
        _dump(result.model_dump(mode="json"))
        return

    console.print(f"[bold]{source_game} → {target_game}[/bold]")
    console.print(f"  Score: {result.overall_transfer_score:.2f} (sample size {result.sample_size})")
    console.print(f"  Common users: {result.common_users}")
    console.print(f"  Common R-types: {', '.join(result.common_r_types) or '-'}")
    console.print(f"  {result.interpretation}")


@cli.command()
@click.option(
    "--type", "query_type",
    type=click.Choice(["decisions", "sessions", "patterns", "profiles"]),
    default="decisions",
    show_default=True,
)
@click.option("--user", "user_id")
@click.option("--game", "game_id")
@click.option("--since", help="Start of date range")
@click.option("--until", help="End of date range (default: now)")
@click.option("--r-type", "r_types", multiple=True)
@click.option("--t-type", "t_types", multiple=True)
@click.option(
    "--group-by", "group_by", multiple=True,
    type=click.Choice(["user_id", "game_id", "r_type", "t_type", "day", "week"]),
)
@click.option("--limit", type=click.IntRange(min=0))
@click.option("--offset", default=0, type=click.IntRange(min=0))
@click.pass_context
def query(ctx, query_type, user_id, game_id, since, until, r_types, t_types, group_by, limit, offset):
    """Run an analytics query and print the result as JSON."""
    date_range = None
    if since or until:
        date_range = DateRange(start=_time_ms(since) or 0, end=_time_ms(until) or now_ms())

    request = AnalyticsQuery(
        type=query_type,
        filters=QueryFilters(
            user_id=user_id,
            game_id=game_id,
            date_range=date_range,
            r_types=r_types or None,
            t_types=t_types or None,
        ),
        group_by=group_by,
        limit=limit,
        offset=offset,
    )
    try:
        result = QueryEngine(_store(ctx)).execute(request)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    _dump(result.model_dump(mode="json"))


@cli.command()
@click.option("--game", "game_ids", multiple=True, help="Restrict to these games")
@click.option("--user", "user_ids", multiple=True, help="Restrict to this cohort of users")
@click.option("--r-type", "r_types", multiple=True)
@click.option("--include-events", is_flag=True, help="Include anonymized raw events")
@click.option("--salt", default="", envvar="GAMELYTICS_EXPORT_SALT", help="Salt for user pseudonyms")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Write to file instead of stdout")
@click.pass_context
def export(ctx, game_ids, user_ids, r_types, include_events, salt, output):
    """Build a research export."""
    result = build_research_export(
        _store(ctx),
        ExportFilters(
            game_ids=game_ids or None,
            user_cohort=user_ids or None,
            r_types=r_types or None,
        ),
        include_events=include_events,
        salt=salt,
    )
    payload = json.dumps(result.model_dump(mode="json"), indent=2, default=str)
    if output:
        output.write_text(payload)
        console.print(f"[green]✓[/green] Wrote export {result.export_id} to {output}")
    else:
        click.echo(payload)


if __name__ == "__main__":
    cli()
