"""
coursenav CLI - Terminal front-end for a course session.

A thin presentation layer over the navigation controller: it prints the
course outline and progress, steps through content and records completions.

Usage:
    coursenav outline 42                          # Topics, tasks and items
    coursenav progress 42                         # Local and server progress
    coursenav next 42 --task 7 --type video --id 3
    coursenav complete 42 7 video 3
"""

from __future__ import annotations

import asyncio
import sys
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from coursenav.config import Settings, get_settings
from coursenav.core.cache import CourseCache
from coursenav.core.course_client import CourseServiceClient
from coursenav.core.exceptions import ContentUnavailableError, CourseNavError
from coursenav.core.navigator import NavigationController

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="coursenav",
    help="Course progression client - navigate a course and track completion",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()


def _controller(client: CourseServiceClient, settings: Settings) -> NavigationController:
    cache = CourseCache(ttl_seconds=settings.cache_ttl_seconds)
    return NavigationController(client, cache, settings=settings)


def _run(coro) -> None:
    """Run a command coroutine, turning engine errors into a clean exit."""
    try:
        asyncio.run(coro)
    except ContentUnavailableError as e:
        console.print(f"[red]Failed to load course {e.course_id}. Please try again later.[/]")
        raise typer.Exit(1)
    except CourseNavError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def outline(
    course_id: Annotated[str, typer.Argument(help="Course ID")],
) -> None:
    """Show the course outline with completion marks."""
    _run(_outline(get_settings(), course_id))


async def _outline(settings: Settings, course_id: str) -> None:
    async with CourseServiceClient.from_settings(settings) as client:
        nav = _controller(client, settings)
        await nav.open(course_id)

        course = nav.course
        tree = Tree(f"[bold cyan]{course.title or course.id}[/]")
        for topic in nav.sidebar():
            topic_node = tree.add(f"[bold]{topic.title}[/]")
            for task in topic.tasks:
                badge = f"{task.progress.completed}/{task.progress.total}"
                task_node = topic_node.add(f"{task.title} [dim]({badge})[/]")
                for item in task.items:
                    mark = "[green]✓[/]" if item.completed else "[dim]○[/]"
                    task_node.add(f"{mark} {item.position.type.value}: {item.title or item.position.id}")
        console.print(tree)


@app.command()
def progress(
    course_id: Annotated[str, typer.Argument(help="Course ID")],
) -> None:
    """Show local and server-reported progress."""
    _run(_progress(get_settings(), course_id))


async def _progress(settings: Settings, course_id: str) -> None:
    async with CourseServiceClient.from_settings(settings) as client:
        nav = _controller(client, settings)
        await nav.open(course_id)
        local = nav.progress
        remote = await nav.server_progress()

        table = Table(title=f"Course {course_id} Progress")
        table.add_column("Source", style="cyan")
        table.add_column("Completed", style="green")
        table.add_column("Total")
        table.add_column("Percent")
        table.add_row("Local", str(local.completed), str(local.total), f"{local.percentage}%")
        table.add_row("Server", str(remote.completed), str(remote.total), f"{remote.percentage}%")
        console.print(table)


@app.command("next")
def next_item(
    course_id: Annotated[str, typer.Argument(help="Course ID")],
    task: Annotated[str | None, typer.Option("--task", "-t", help="Current task ID")] = None,
    content_type: Annotated[str | None, typer.Option("--type", help="Current content type")] = None,
    content_id: Annotated[str | None, typer.Option("--id", help="Current content ID")] = None,
    back: Annotated[bool, typer.Option("--back", "-b", help="Go to the previous item")] = False,
) -> None:
    """Print the item after (or before) a position."""
    _run(_next(get_settings(), course_id, task, content_type, content_id, back))


async def _next(
    settings: Settings,
    course_id: str,
    task: str | None,
    content_type: str | None,
    content_id: str | None,
    back: bool,
) -> None:
    async with CourseServiceClient.from_settings(settings) as client:
        nav = _controller(client, settings)
        start = await nav.open(course_id, task, content_type, content_id)
        if start is None:
            console.print("[yellow]This course has no content yet.[/]")
            return

        target = await (nav.go_prev() if back else nav.go_next())
        if target is None:
            console.print("[yellow]No further content.[/]")
            return
        console.print(
            f"[green]→[/] task={target.task_id} type={target.type.value} id={target.id}"
        )


@app.command()
def complete(
    course_id: Annotated[str, typer.Argument(help="Course ID")],
    task: Annotated[str, typer.Argument(help="Task ID")],
    content_type: Annotated[str, typer.Argument(help="Content type")],
    content_id: Annotated[str, typer.Argument(help="Content ID")],
) -> None:
    """Mark a content item completed."""
    _run(_complete(get_settings(), course_id, task, content_type, content_id))


async def _complete(
    settings: Settings,
    course_id: str,
    task: str,
    content_type: str,
    content_id: str,
) -> None:
    async with CourseServiceClient.from_settings(settings) as client:
        nav = _controller(client, settings)
        await nav.open(course_id)
        outcome = await nav.complete(task, content_type, content_id)

        if outcome.warning:
            console.print(f"[yellow]⚠ {outcome.warning}[/]")
        console.print(
            Panel(
                f"Completed: {outcome.progress.completed}/{outcome.progress.total}\n"
                f"Progress: {outcome.progress.percentage}%",
                title="✓ Marked complete",
                border_style="green",
            )
        )


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level=get_settings().log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )

    app()


if __name__ == "__main__":
    main()
