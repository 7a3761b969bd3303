"""CLI entrypoint for crosssell-tasks."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from crosssell_tasks import __version__
from crosssell_tasks.config import KNOWN_TIERS
from crosssell_tasks.generation.controllers import (
    ActivityListCommand,
    CreateFromOpportunityCommand,
    DismissOpportunityCommand,
    GenerateCommand,
    ImportOpportunitiesCommand,
    ListOpportunitiesCommand,
    OrphanedTasksCommand,
    TaskGenerationCliController,
)
from crosssell_tasks.generation.errors import TaskGenerationError
from crosssell_tasks.generation.models import MAX_DUE_DATE_DAYS_BEFORE_RENEWAL

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TaskGenerationCliController()

CommandT = TypeVar("CommandT")

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
TENANT_OPTION = click.option(
    "--tenant-scope",
    default=None,
    help="Tenant scope (agency). Defaults to CROSSSELL_TASKS_TENANT_SCOPE.",
)


@click.group()
@click.version_option(version=__version__, prog_name="crosssell-tasks")
def crosssell_tasks() -> None:
    """Turn scored cross-sell opportunities into agent follow-up tasks."""


@crosssell_tasks.command("generate")
@DB_PATH_OPTION
@TENANT_OPTION
@click.option("--created-by", default=None, help="Acting user. Defaults to CROSSSELL_TASKS_ACTOR.")
@click.option(
    "--opportunity-id",
    "opportunity_ids",
    multiple=True,
    help="Explicit opportunity id. Can be repeated; replaces the tier filter.",
)
@click.option(
    "--tier",
    "tiers",
    multiple=True,
    type=click.Choice(KNOWN_TIERS, case_sensitive=False),
    help="Priority tier to include. Can be repeated. Defaults to CROSSSELL_TASKS_DEFAULT_TIERS.",
)
@click.option(
    "--max-opportunities",
    type=click.IntRange(min=1),
    default=None,
    help="Upper bound on tasks created in this run (capped by configuration).",
)
@click.option("--assign-to", "auto_assign_to", default=None, help="Assignee for created tasks.")
@click.option(
    "--talking-points/--no-talking-points",
    default=True,
    show_default=True,
    help="Include contact details and talking points in task notes.",
)
@click.option(
    "--due-from-renewal/--no-due-date",
    default=True,
    show_default=True,
    help="Derive due date from the renewal date.",
)
@click.option(
    "--days-before-renewal",
    type=click.IntRange(min=0, max=MAX_DUE_DATE_DAYS_BEFORE_RENEWAL),
    default=None,
    help="Days before renewal for the due date.",
)
@click.option(
    "--subtasks/--no-subtasks",
    default=True,
    show_default=True,
    help="Attach the standard cross-sell checklist.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the response payload as JSON.")
def generate(  # noqa: PLR0913
    db_path: Path | None,
    tenant_scope: str | None,
    created_by: str | None,
    opportunity_ids: tuple[str, ...],
    tiers: tuple[str, ...],
    max_opportunities: int | None,
    auto_assign_to: str | None,
    talking_points: bool,
    due_from_renewal: bool,
    days_before_renewal: int | None,
    subtasks: bool,
    as_json: bool,
) -> None:
    """Create tasks for the top eligible opportunities."""

    _emit_lines(
        _run(
            CONTROLLER.generate,
            GenerateCommand(
                db_path=db_path,
                tenant_scope=tenant_scope,
                created_by=created_by,
                opportunity_ids=opportunity_ids,
                tiers=tuple(tier.upper() for tier in tiers),
                max_opportunities=max_opportunities,
                auto_assign_to=auto_assign_to,
                include_talking_points=talking_points,
                set_due_date_to_renewal=due_from_renewal,
                due_date_days_before_renewal=days_before_renewal,
                create_subtasks=subtasks,
                as_json=as_json,
            ),
        ),
    )


@crosssell_tasks.group()
def opportunities() -> None:
    """Opportunity commands."""


@opportunities.command("import")
@DB_PATH_OPTION
@TENANT_OPTION
@click.argument("csv_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
def opportunities_import(db_path: Path | None, tenant_scope: str | None, csv_path: Path) -> None:
    """Upsert opportunities from a CSV export."""

    _emit_lines(
        _run(
            CONTROLLER.import_opportunities,
            ImportOpportunitiesCommand(
                db_path=db_path,
                tenant_scope=tenant_scope,
                csv_path=csv_path,
            ),
        ),
    )


@opportunities.command("list")
@DB_PATH_OPTION
@TENANT_OPTION
@click.option("--include-claimed", is_flag=True, help="Also show opportunities with a task.")
@click.option("--include-dismissed", is_flag=True, help="Also show dismissed opportunities.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max opportunities to show.",
)
def opportunities_list(
    db_path: Path | None,
    tenant_scope: str | None,
    include_claimed: bool,
    include_dismissed: bool,
    limit: int,
) -> None:
    """List opportunities in priority rank order."""

    _emit_lines(
        _run(
            CONTROLLER.list_opportunities,
            ListOpportunitiesCommand(
                db_path=db_path,
                tenant_scope=tenant_scope,
                include_claimed=include_claimed,
                include_dismissed=include_dismissed,
                limit=limit,
            ),
        ),
    )


@opportunities.command("dismiss")
@DB_PATH_OPTION
@TENANT_OPTION
@click.argument("opportunity_id")
@click.option("--reason", default=None, help="Why the opportunity is not worth pursuing.")
def opportunities_dismiss(
    db_path: Path | None,
    tenant_scope: str | None,
    opportunity_id: str,
    reason: str | None,
) -> None:
    """Dismiss an unclaimed opportunity."""

    _emit_lines(
        _run(
            CONTROLLER.dismiss_opportunity,
            DismissOpportunityCommand(
                db_path=db_path,
                tenant_scope=tenant_scope,
                opportunity_id=opportunity_id,
                reason=reason,
            ),
        ),
    )


@crosssell_tasks.group()
def tasks() -> None:
    """Task commands."""


@tasks.command("create-from-opportunity")
@DB_PATH_OPTION
@TENANT_OPTION
@click.argument("opportunity_id")
@click.option("--created-by", default=None, help="Acting user. Defaults to CROSSSELL_TASKS_ACTOR.")
@click.option("--assign-to", "auto_assign_to", default=None, help="Assignee for the task.")
@click.option("--json", "as_json", is_flag=True, help="Print the response payload as JSON.")
def tasks_create_from_opportunity(
    db_path: Path | None,
    tenant_scope: str | None,
    opportunity_id: str,
    created_by: str | None,
    auto_assign_to: str | None,
    as_json: bool,
) -> None:
    """Create the follow-up task for one opportunity."""

    _emit_lines(
        _run(
            CONTROLLER.create_from_opportunity,
            CreateFromOpportunityCommand(
                db_path=db_path,
                tenant_scope=tenant_scope,
                created_by=created_by,
                opportunity_id=opportunity_id,
                auto_assign_to=auto_assign_to,
                as_json=as_json,
            ),
        ),
    )


@tasks.command("orphans")
@DB_PATH_OPTION
@TENANT_OPTION
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=100,
    show_default=True,
    help="Max tasks to show.",
)
def tasks_orphans(db_path: Path | None, tenant_scope: str | None, limit: int) -> None:
    """Report tasks whose source opportunity does not point back at them."""

    _emit_lines(
        _run(
            CONTROLLER.orphaned_tasks,
            OrphanedTasksCommand(db_path=db_path, tenant_scope=tenant_scope, limit=limit),
        ),
    )


@crosssell_tasks.group()
def activity() -> None:
    """Activity log commands."""


@activity.command("list")
@DB_PATH_OPTION
@TENANT_OPTION
@click.option("--task-id", default=None, help="Only entries for this task.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max entries to show.",
)
def activity_list(
    db_path: Path | None,
    tenant_scope: str | None,
    task_id: str | None,
    limit: int,
) -> None:
    """Show recent activity log entries."""

    _emit_lines(
        _run(
            CONTROLLER.activity,
            ActivityListCommand(
                db_path=db_path,
                tenant_scope=tenant_scope,
                task_id=task_id,
                limit=limit,
            ),
        ),
    )


def _run(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except TaskGenerationError as error:
        raise click.ClickException(f"{error.message} (code={error.code})") from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    crosssell_tasks()
