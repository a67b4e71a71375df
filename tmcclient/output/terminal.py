"""Rich terminal output for courses, reviews and submission results."""
from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tmcclient.models import Course, Review, SubmissionResult, SubmissionStatus

console = Console()

STATUS_LABELS = {
    SubmissionStatus.OK: "[bold green]All tests passed![/bold green]",
    SubmissionStatus.FAIL: "[bold red]Some tests failed.[/bold red]",
    SubmissionStatus.ERROR: "[bold red]Error while running tests.[/bold red]",
    SubmissionStatus.PROCESSING: "[yellow]Still processing...[/yellow]",
}


def render_courses(courses: list[Course]) -> None:
    if not courses:
        console.print("[dim]No courses available.[/dim]")
        return
    table = Table(title="Courses", show_lines=False)
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Exercises", justify="right")
    table.add_column("Unlockable", justify="right")
    for course in courses:
        table.add_row(str(course.id), course.name, str(len(course.exercises)),
                      str(len(course.unlockables)))
    console.print(table)


def render_reviews(reviews: list[Review]) -> None:
    if not reviews:
        console.print("[dim]No code reviews.[/dim]")
        return
    for review in reviews:
        title = f"{review.exercise_name} (submission {review.submission_id})"
        if not review.marked_as_read:
            title = f"[bold]{title}[/bold] [yellow]unread[/yellow]"
        console.print(Panel(Text(review.review_body), title=title, title_align="left"))


def render_submission_result(result: SubmissionResult) -> None:
    console.print(STATUS_LABELS[result.status])

    if result.status == SubmissionStatus.ERROR:
        if result.error:
            console.print(Panel(Text(result.error), title="Error", border_style="red"))
        return

    # Failures first, then passes.
    for tc in sorted(result.test_cases, key=lambda t: t.successful):
        mark = "[green]PASS[/green]" if tc.successful else "[red]FAIL[/red]"
        console.print(f"  {mark}  {tc.name}")
        if not tc.successful and tc.message:
            console.print(Text(f"        {tc.message}", style="dim"))

    if result.points:
        console.print(f"\n  Points: {', '.join(result.points)}")
    if result.status == SubmissionStatus.OK and result.solution_url:
        console.print(f"  Model solution: {result.solution_url}")
