"""Click CLI entry point for tmc-client."""
from __future__ import annotations

import logging
import os
import sys

import click

from tmcclient import __version__
from tmcclient.api.server import ServerAccess
from tmcclient.config import TmcSettings, get_config_value, load_settings, set_config_value
from tmcclient.errors import ConfigError, ObsoleteClientError, TmcError
from tmcclient.models import Course, Exercise
from tmcclient.output.terminal import render_courses, render_reviews, render_submission_result
from tmcclient.project import detect_project
from tmcclient.submission import poll_submission_result, submit_project
from tmcclient.tasks import CancellableTask, FunctionTask, TaskHandle, TaskRunner
from tmcclient.zipping import policy_for, zip_project_sources

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_OBSOLETE = 3
EXIT_CANCELLED = 130


@click.group()
@click.version_option(version=__version__, prog_name="tmc")
@click.option("--verbose", is_flag=True, help="Debug logging to stderr")
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="Config file (default ~/.tmc/config.json)")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: str | None) -> None:
    """tmc - submit exercises to a TMC server."""
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(name)s: %(message)s",
    )
    ctx.obj = {"config_path": config_path}


def _settings(ctx: click.Context) -> TmcSettings:
    settings = load_settings(ctx.obj.get("config_path"))
    with ServerAccess(settings) as server:
        needs_password = server.needs_only_password()
        complete = server.has_enough_settings()
    if needs_password:
        settings.password = click.prompt("Password", hide_input=True)
    elif not complete:
        click.echo("Server URL, username and password are required. "
                   "Use `tmc config set` and TMC_PASSWORD.", err=True)
        sys.exit(EXIT_FAILED)
    return settings


def _wait(handle: TaskHandle):
    """Wait for a task; Ctrl-C cancels it and waits for the cancellation."""
    try:
        outcome = handle.wait()
    except KeyboardInterrupt:
        click.echo("Cancelling...", err=True)
        handle.cancel()
        outcome = handle.wait()

    if outcome.is_cancelled:
        click.echo("Cancelled.", err=True)
        sys.exit(EXIT_CANCELLED)
    if outcome.is_failed:
        error = outcome.error
        if isinstance(error, ObsoleteClientError):
            click.echo(f"{error} (client version {__version__})", err=True)
            sys.exit(EXIT_OBSOLETE)
        if isinstance(error, TmcError):
            click.echo(f"Error: {error}", err=True)
            sys.exit(EXIT_FAILED)
        raise error
    return outcome.value


def _run(task: CancellableTask, description: str):
    with TaskRunner(max_workers=1) as runner:
        return _wait(runner.start(task, description=description))


@cli.command()
@click.pass_context
def courses(ctx: click.Context) -> None:
    """List the courses available on the server."""
    with ServerAccess(_settings(ctx)) as server:
        course_list = _run(server.get_downloading_course_list_task(), "Downloading course list")
    render_courses(course_list)


@cli.command("zip")
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("-o", "--output", type=click.Path(dir_okay=False), default=None,
              help="Where to write the archive (default <project>.zip)")
def zip_cmd(path: str, output: str | None) -> None:
    """Zip a project the way it would be submitted."""
    project = detect_project(path)
    try:
        data = zip_project_sources(project.path, policy_for(project))
    except TmcError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    output = output or f"{project.name}.zip"
    with open(output, "wb") as f:
        f.write(data)
    click.echo(f"Wrote {output} ({len(data)} bytes, {project.project_type.value} project)")


@cli.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--return-url", required=True, help="The exercise's submission URL")
@click.option("--exercise", "exercise_name", default=None, help="Exercise name (default: directory name)")
@click.option("--review", "request_review", is_flag=True, help="Request a code review")
@click.option("--wait/--no-wait", default=True, help="Wait for the test results")
@click.pass_context
def submit(ctx: click.Context, path: str, return_url: str, exercise_name: str | None,
           request_review: bool, wait: bool) -> None:
    """Zip and submit a project for grading."""
    settings = _settings(ctx)
    name = exercise_name or os.path.basename(os.path.abspath(path))
    exercise = Exercise(name=name, return_url=return_url)

    with ServerAccess(settings) as server:
        with TaskRunner(max_workers=1) as runner:
            handle = submit_project(runner, server, path, exercise, request_review=request_review)
            submission_url = _wait(handle)

        if request_review:
            click.echo("Code submitted for review.")
        click.echo(f"Submission: {submission_url}")
        if not wait:
            return

        poll = FunctionTask(lambda task: poll_submission_result(
            server, submission_url, is_cancelled=lambda: task.cancelled, sleep=task.sleep))
        result = _run(poll, "Waiting for submission result")

    if result is None:
        click.echo("Timed out waiting for results.", err=True)
        sys.exit(EXIT_FAILED)
    render_submission_result(result)
    if not result.all_tests_passed:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--reviews-url", required=True, help="The course's reviews URL")
@click.pass_context
def reviews(ctx: click.Context, reviews_url: str) -> None:
    """List code reviews for a course."""
    course = Course(id=0, name="", reviews_url=reviews_url)
    with ServerAccess(_settings(ctx)) as server:
        review_list = _run(server.get_downloading_review_list_task(course), "Downloading reviews")
    render_reviews(review_list)


@cli.command()
@click.argument("url")
@click.option("-o", "--output", type=click.Path(dir_okay=False), required=True)
@click.pass_context
def download(ctx: click.Context, url: str, output: str) -> None:
    """Download an exercise or model solution zip."""
    exercise = Exercise(name=os.path.basename(output), download_url=url)
    with ServerAccess(_settings(ctx)) as server:
        data = _run(server.get_downloading_exercise_zip_task(exercise), f"Downloading {url}")
    with open(output, "wb") as f:
        f.write(data)
    click.echo(f"Wrote {output} ({len(data)} bytes)")


@cli.group()
def config() -> None:
    """Manage tmc configuration."""
    pass


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value: server_url, username, locale, spyware (on/off), timeout."""
    try:
        set_config_value(key, value, ctx.obj.get("config_path"))
    except ConfigError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_FAILED)
    click.echo(f"{key} = {value}")


@config.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx: click.Context, key: str) -> None:
    """Get a configuration value."""
    try:
        value = get_config_value(key, ctx.obj.get("config_path"))
    except ConfigError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_FAILED)
    if isinstance(value, bool):
        value = "on" if value else "off"
    click.echo(f"{key}: {value}")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
