"""Interactive CLI application."""
import string
import time
from typing import Optional

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from rad_tutor.config import Settings, configure_logging, get_settings
from rad_tutor.errors import NotFoundError, TutorError
from rad_tutor.models import CaseFilters
from rad_tutor.readiness import readiness_color
from rad_tutor.seed import is_seeded, seed_all
from rad_tutor.service import ReviewService, build_service

console = Console()
logger = structlog.get_logger()

EXIT_WORDS = ("q", "menu")


class SessionExitRequested(Exception):
    """Raised when the user leaves a running session from a prompt."""


def session_prompt(prompt: str, choices: Optional[list[str]] = None) -> str:
    """Ask within a session; 'q' or 'menu' leaves it."""
    while True:
        answer = Prompt.ask(prompt).strip().lower()
        if answer in EXIT_WORDS:
            raise SessionExitRequested()
        if choices is None or answer in choices:
            return answer
        console.print(f"[red]Please choose one of: {', '.join(choices)}[/red]")


def session_int_prompt(prompt: str, low: int, high: int) -> int:
    while True:
        answer = session_prompt(prompt)
        if answer.isdigit() and low <= int(answer) <= high:
            return int(answer)
        console.print(f"[red]Enter a number from {low} to {high}.[/red]")


def show_welcome():
    console.print(Panel(
        "[bold]Radiology Case Review[/bold]\n[dim]Spaced repetition for imaging diagnosis[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("quick", "Quick quiz from random cases"),
        ("daily", "Today's daily challenge"),
        ("review", "Cases due for review"),
        ("plan", "Study plan session"),
        ("weakness", "Drill your weakest cases"),
        ("progress", "Progress summary"),
        ("readiness", "Board readiness score"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


def _snapshot(session: dict, index: int, correct: int) -> dict:
    return {
        "session_id": session["session_id"],
        "mode": session["mode"],
        "current_index": index,
        "correct_count": correct,
        "total": len(session["cards"]),
    }


def run_quiz_session(service: ReviewService, settings: Settings, session: dict, start_index: int = 0) -> Optional[dict]:
    """Walk the cards of a started session; returns the completion payload, or None if left early."""
    cards = session["cards"]
    correct = session.get("correct_count", 0)
    console.print(f"\n[bold]{session['mode'].title()} session[/bold] ({len(cards)} cards, 'q' to leave)\n")
    service.put_active_session(settings.user_id, _snapshot(session, start_index, correct), settings.device_id)
    for i in range(start_index, len(cards)):
        card = cards[i]
        letters = list(string.ascii_lowercase[: len(card["options"])])
        console.print(Panel(
            f"[dim]{card['specialty']} | difficulty {card['difficulty']}[/dim]\n\n{card['title']}",
            title=f"Case {i + 1}/{len(cards)}", border_style="cyan",
        ))
        if card["image_url"]:
            console.print(f"[dim]Image: {card['image_url']}[/dim]")
        console.print(f"[bold]{card['question']}[/bold]\n")
        for letter, option in zip(letters, card["options"]):
            console.print(f"  [cyan]{letter})[/cyan] {option}")
        started = time.monotonic()
        try:
            answer = session_prompt("\nYour answer", choices=letters)
        except SessionExitRequested:
            console.print("[dim]Session saved. You can resume it next time.[/dim]")
            return None
        elapsed_ms = int((time.monotonic() - started) * 1000)
        result = service.submit_answer(
            session["session_id"], letters.index(answer), time_spent_ms=elapsed_ms, card_index=i,
        )
        if result["correct"]:
            correct += 1
            console.print(f"[green]Correct![/green] [dim]+{result['xp_earned']} XP[/dim]")
        else:
            console.print(
                f"[red]Incorrect.[/red] Answer: [green]{card['options'][result['correct_index']]}[/green]"
            )
        if card["explanation"]:
            console.print(f"[dim]{card['explanation']}[/dim]")
        console.print()
        if result["completed"]:
            break
        service.put_active_session(settings.user_id, _snapshot(session, i + 1, correct), settings.device_id)

    service.delete_active_session(settings.user_id)
    outcome = service.complete_session(session["session_id"])
    show_summary(outcome)
    return outcome


def show_summary(outcome: dict):
    summary = outcome["summary"]
    console.print(Panel(
        f"Score: [bold]{summary['correct_count']}/{summary['total']}[/bold] ({summary['accuracy']}%)\n"
        f"Time: {summary['duration_ms'] // 1000}s  |  XP: [bold]{summary['xp_earned']}[/bold]"
        + (f" (bonus {outcome['bonus_xp']})" if outcome["bonus_xp"] else ""),
        title="Session complete", border_style="green",
    ))
    if summary["missed_answers"]:
        table = Table(title="Missed")
        table.add_column("Case")
        table.add_column("Your answer", style="red")
        table.add_column("Correct", style="green")
        for m in summary["missed_answers"]:
            table.add_row(m["case_id"], m.get("your_answer", ""), m.get("correct_answer", ""))
        console.print(table)


def _start_and_run(service: ReviewService, settings: Settings, mode: str, **kwargs) -> None:
    try:
        session = service.start_session(settings.user_id, mode, **kwargs)
    except NotFoundError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return
    run_quiz_session(service, settings, session)


def cmd_quick(service: ReviewService, settings: Settings):
    modality = Prompt.ask("Modality [dim](blank for any)[/dim]", default="").strip() or None
    body_part = Prompt.ask("Body part [dim](blank for any)[/dim]", default="").strip() or None
    filters = CaseFilters(modality=modality, body_part=body_part) if modality or body_part else None
    _start_and_run(service, settings, "quick", filters=filters)


def cmd_daily(service: ReviewService, settings: Settings):
    _start_and_run(service, settings, "daily")


def cmd_review(service: ReviewService, settings: Settings):
    due = service.get_due_for_review(settings.user_id, limit=settings.review_session_size)
    console.print(f"[bold]{due['total_due']}[/bold] due, [bold]{due['total_new']}[/bold] new")
    _start_and_run(service, settings, "review")


def cmd_weakness(service: ReviewService, settings: Settings):
    _start_and_run(service, settings, "weakness")


def cmd_plan(service: ReviewService, settings: Settings):
    plans = [p for p in service.list_study_plans(settings.user_id) if p["status"] == "active"]
    if not plans:
        templates = service.list_plan_templates()
        table = Table(title="Study Plan Templates")
        table.add_column("#", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Milestones", justify="right")
        for i, t in enumerate(templates, 1):
            table.add_row(str(i), t["name"], str(len(t["milestones"])))
        console.print(table)
        choice = Prompt.ask("Start plan", choices=[str(i) for i in range(1, len(templates) + 1)])
        created = service.create_study_plan(settings.user_id, templates[int(choice) - 1]["id"])
        plan_id = created["plan_id"]
    else:
        plan = plans[0]
        console.print(
            f"[cyan]{plan['name']}[/cyan]: milestone {plan['current_milestone'] + 1} of {plan['total_milestones']}"
        )
        plan_id = plan["id"]
    _start_and_run(service, settings, "plan", plan_id=plan_id)


def cmd_progress(service: ReviewService, settings: Settings):
    summary = service.get_progress_summary(settings.user_id)
    table = Table(title="Progress")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Attempts", str(summary["total_attempts"]))
    table.add_row("Accuracy", f"{summary['accuracy']}%")
    table.add_row("Cases seen", str(summary["unique_cases"]))
    table.add_row("Learning", str(summary["learning_cases"]))
    table.add_row("Mastered", str(summary["mastered_cases"]))
    table.add_row("Study days (30d)", str(len(summary["streak_data"])))
    console.print(table)


def cmd_readiness(service: ReviewService, settings: Settings):
    score = service.get_board_readiness(settings.user_id)
    color = readiness_color(score["total"])
    bar_filled = int(score["total"] / 5)
    bar = f"[{color}]{'█' * bar_filled}{'░' * (20 - bar_filled)}[/{color}]"
    console.print(Panel(
        f"Board Readiness: [bold]{score['total']}[/bold] {bar} [{color}]{score['label']}[/{color}]",
        title="Readiness Dashboard", border_style="blue",
    ))
    table = Table(title="Breakdown")
    table.add_column("Component", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Detail")
    for name, component in score["breakdown"].items():
        table.add_row(name.replace("_", " ").title(), f"{component['score']}/{component['max']}", component["detail"])
    console.print(table)

    weakest = min(score["breakdown"].items(), key=lambda kv: kv[1]["score"])
    if weakest[1]["score"] < 14:
        console.print(f"\n  [yellow]Recommendation: work on {weakest[0].replace('_', ' ')}[/yellow]")


def offer_resume(service: ReviewService, settings: Settings) -> None:
    snapshot = service.get_active_session(settings.user_id)
    if snapshot is None:
        return
    state = snapshot["state"]
    if not Confirm.ask(
        f"Resume your {state.get('mode', '')} session "
        f"({state.get('current_index', 0)}/{state.get('total', '?')} answered)?",
        default=True,
    ):
        service.delete_active_session(settings.user_id)
        return
    try:
        session = service.get_session(state["session_id"])
    except (KeyError, NotFoundError):
        service.delete_active_session(settings.user_id)
        console.print("[yellow]That session is no longer available.[/yellow]")
        return
    if session["status"] != "active":
        service.delete_active_session(settings.user_id)
        console.print("[yellow]That session was already completed.[/yellow]")
        return
    run_quiz_session(service, settings, session, start_index=session["current_index"])


COMMANDS = {
    "quick": cmd_quick,
    "daily": cmd_daily,
    "review": cmd_review,
    "plan": cmd_plan,
    "weakness": cmd_weakness,
    "progress": cmd_progress,
    "readiness": cmd_readiness,
}


def main():
    settings = get_settings()
    configure_logging(settings)
    service = build_service(settings)
    first_run = not is_seeded(settings.db_path)
    if first_run:
        console.print("[dim]Setting up for first use...[/dim]")
    seed_all(settings.db_path)
    if first_run:
        console.print("[green]Ready![/green]\n")

    show_welcome()
    offer_resume(service, settings)

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="quick").strip().lower()
        try:
            if choice in COMMANDS:
                COMMANDS[choice](service, settings)
            elif choice in ("quit", "exit", "q"):
                console.print("[dim]Good luck on your boards![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except TutorError as e:
            console.print(f"[red]Error: {e}[/red]")
        except Exception as e:
            logger.exception("command_failed", command=choice)
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
