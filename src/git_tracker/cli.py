import argparse
import logging
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from . import daemon
from .constants import APP_NAME, LOG_FILE
from .errors import (
    InputError,
    NoSessionError,
    ReauthenticationRequiredError,
    TrackerError,
    TransientError,
)
from .models import BatchReport, RepoStatus, SyncClass
from .ops import Tracker
from .reconcile import format_time_since
from .session import SessionState

logger = logging.getLogger(APP_NAME)
console = Console()

STATUS_STYLES = {
    RepoStatus.ACTIVE: "green",
    RepoStatus.MISSING: "red",
    RepoStatus.MOVED: "yellow",
    RepoStatus.DELETED: "bold red",
}

SYNC_STYLES = {
    SyncClass.SYNCED: "green",
    SyncClass.MISSING_REMOTE: "yellow",
    SyncClass.MISSING_LOCAL: "cyan",
}


def _styled(value: str, style: str) -> str:
    return f"[{style}]{value}[/{style}]"


def _display_path(path: str) -> str:
    return path.replace(str(Path.home()), "~") if path else "-"


def print_report(title: str, report: BatchReport) -> None:
    """Renders a batch report as one table of successes and failures."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="cyan")
    table.add_column("Result")
    table.add_column("Detail", style="dim")

    for entry in report.succeeded:
        detail = ", ".join(
            f"{k}={v}" for k, v in entry.items() if k not in ("repoId", "path")
        )
        table.add_row(_display_path(entry["path"]), _styled("OK", "green"), detail)
    for entry in report.failed:
        table.add_row(_display_path(entry["path"]), _styled("FAILED", "bold red"), entry["error"])

    console.print(table)
    if report.all_succeeded:
        console.print(f"[bold green]✔ {report.total} step(s) completed.[/bold green]")
    else:
        console.print(
            f"[bold yellow]⚠ {len(report.failed)} of {report.total} step(s) failed.[/bold yellow]"
        )


def login(tracker: Tracker, email: str | None) -> None:
    email = email or Prompt.ask("Email")
    password = Prompt.ask("Password", password=True)
    with console.status("Authenticating...", spinner="dots"):
        session = tracker.sessions.login(email, password)
    console.print(f"[bold green]✔ Logged in as {session.email or session.user_id}.[/bold green]")


def show_session(tracker: Tracker) -> None:
    """Displays the stored session and where it sits in its lifecycle."""
    session = tracker.sessions.store.get()
    state = tracker.sessions.state()

    style = {
        SessionState.VALID: "bold green",
        SessionState.ACCESS_EXPIRED: "yellow",
        SessionState.FULLY_EXPIRED: "bold red",
        SessionState.NO_SESSION: "dim",
    }[state]

    content = Text()
    content.append("State:   ", style="bold")
    content.append(state.value + "\n", style=style)
    if session:
        content.append(f"User:    {session.email or session.user_id}\n")
        content.append(f"Access:  expires {session.access_expires_at:%Y-%m-%d %H:%M} UTC\n", style="dim")
        content.append(f"Refresh: expires {session.refresh_expires_at:%Y-%m-%d %H:%M} UTC", style="dim")
    else:
        content.append("Run 'git-tracker login' to authenticate.", style="dim")

    console.print(Panel(content, title="Session", expand=False))


def register_repo(
    tracker: Tracker,
    path: str | None,
    name: str | None,
    description: str,
    project_id: str | None,
) -> None:
    target = Path(path or Path.cwd()).expanduser().resolve()
    with console.status(f"Registering [cyan]{target.name}[/cyan]...", spinner="dots"):
        repo = tracker.register_repository(
            name or target.name, str(target), description=description, project_id=project_id
        )

    if repo.external_id:
        console.print(
            f"[bold green]✔ Registered:[/bold green] [cyan]{repo.name}[/cyan] ({repo.external_id})"
        )
    else:
        console.print(
            f"[bold yellow]⚠ Saved locally as #{repo.id}.[/bold yellow] "
            "Remote registration will be retried on the next sync."
        )


def extract(tracker: Tracker, ref: str, branch: str | None) -> None:
    with console.status("Extracting commits...", spinner="dots"):
        result = tracker.extract_commits(ref, branch=branch)

    if not result.new_commits:
        console.print(f"[dim]No new commits by {result.author or 'anyone'} since last run.[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Commit", style="cyan")
    table.add_column("Branch")
    table.add_column("Message")
    table.add_column("+/-", justify="right", style="dim")

    for commit in result.new_commits:
        stats = commit.stats
        table.add_row(
            commit.commit_hash[:10],
            commit.branch,
            commit.message.splitlines()[0] if commit.message else "",
            f"+{stats.insertions}/-{stats.deletions}",
        )

    console.print(table)
    console.print(f"[bold green]✔ {len(result.new_commits)} new commit(s) staged.[/bold green]")


def list_repos(tracker: Tracker) -> None:
    """Lists every locally tracked repository from the ledger."""
    repos = tracker.ledger.list_repositories()
    if not repos:
        console.print("[yellow]No repositories tracked yet.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Repository", style="cyan")
    table.add_column("Path")
    table.add_column("Status")
    table.add_column("Unsynced", justify="right")
    table.add_column("Last Sync", justify="right", style="dim")

    for repo in repos:
        unsynced = len(tracker.ledger.unsynced_for(repo.scope))
        table.add_row(
            repo.ref if repo.external_id else f"#{repo.id}",
            repo.name,
            _display_path(repo.path),
            _styled(repo.status.value, STATUS_STYLES[repo.status]),
            str(unsynced),
            format_time_since(repo.last_synced_at),
        )

    console.print(table)


def compare_repos(tracker: Tracker) -> None:
    with console.status("Comparing with backend...", spinner="dots"):
        view = tracker.repository_view()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Sync", justify="center")
    table.add_column("Repository", style="cyan")
    table.add_column("Path")
    table.add_column("Status")
    table.add_column("Last Sync", justify="right", style="dim")

    for entry in view.entries:
        table.add_row(
            _styled(entry.sync_class.value, SYNC_STYLES[entry.sync_class]),
            entry.name,
            _display_path(entry.path),
            _styled(entry.status.value, STATUS_STYLES[entry.status]),
            format_time_since(entry.last_synced_at),
        )

    console.print(table)
    summary = ", ".join(f"{v} {k}" for k, v in view.counts.items())
    console.print(f"[dim]{summary}[/dim]")


def list_branches(tracker: Tracker, ref: str) -> None:
    branches = tracker.list_branches(ref)
    if not branches:
        console.print("[yellow]No branches found.[/yellow]")
        return
    for branch in branches:
        console.print(f"   {branch}", style="cyan" if "/" not in branch else "dim")


def update_repo(tracker: Tracker, ref: str, name: str | None, description: str | None) -> None:
    if name is None and description is None:
        console.print("[yellow]Nothing to update. Pass --name and/or --description.[/yellow]")
        return
    repo = tracker.update_repository(ref, name=name, description=description)
    console.print(f"[bold green]✔ Updated:[/bold green] [cyan]{repo.name}[/cyan]")


def remove_repo(tracker: Tracker, ref: str, assume_yes: bool) -> None:
    repo = tracker.ledger.resolve(ref)
    if not assume_yes and not Confirm.ask(
        f"Stop tracking [cyan]{repo.name}[/cyan] and drop its staged commits?"
    ):
        console.print("[dim]Skipped.[/dim]")
        return
    tracker.remove_repository(ref)
    console.print(f"✔ Removed: [cyan]{repo.name}[/cyan]", style="green")


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


class TrackerHelpFormatter(argparse.HelpFormatter):
    """Groups the subcommands into logical categories in the help output."""

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []

            groups = {
                "Session": ["login", "logout", "session"],
                "Repositories": ["register", "list", "branches", "update", "remove"],
                "Sync": ["extract", "sync", "now", "status", "compare"],
                "Maintenance": ["log"],
            }

            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                parts.append(f"\n  {group_name}:\n")

                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        formatter_class=TrackerHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command")

    login_parser = subparsers.add_parser("login", help="Authenticate as a developer")
    login_parser.add_argument("--email", "-e", help="Account email (prompted if omitted)")
    subparsers.add_parser("logout", help="Forget the stored session")
    subparsers.add_parser("session", help="Show session state")

    register_parser = subparsers.add_parser("register", help="Start tracking a repository")
    register_parser.add_argument("path", nargs="?", help="Repository path (default: cwd)")
    register_parser.add_argument("--name", "-n", help="Display name (default: directory name)")
    register_parser.add_argument("--description", "-d", default="", help="Description")
    register_parser.add_argument("--project", "-p", dest="project_id", help="Project ID")

    subparsers.add_parser("list", help="List tracked repositories")

    branches_parser = subparsers.add_parser("branches", help="List a repository's branches")
    branches_parser.add_argument("repo", help="Repository ID")

    update_parser = subparsers.add_parser("update", help="Rename or describe a repository")
    update_parser.add_argument("repo", help="Repository ID")
    update_parser.add_argument("--name", "-n")
    update_parser.add_argument("--description", "-d")

    remove_parser = subparsers.add_parser("remove", help="Stop tracking a repository")
    remove_parser.add_argument("repo", help="Repository ID")
    remove_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    extract_parser = subparsers.add_parser("extract", help="Stage new commits of one repository")
    extract_parser.add_argument("repo", help="Repository ID")
    extract_parser.add_argument("--branch", "-b", help="Restrict to one branch")

    subparsers.add_parser("sync", help="Extract and deliver all repositories")
    subparsers.add_parser("now", help="Run one daemon cycle in the foreground")
    subparsers.add_parser("status", help="Probe and publish the status of every repository")
    subparsers.add_parser("compare", help="Compare local and remote repositories")
    subparsers.add_parser("log", help="Tail the daemon log file")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Git Tracker CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return
    elif args.command == "now":
        daemon.main(interactive=True)
        return
    elif args.command == "log":
        tail_log()
        return

    tracker = Tracker.from_config()
    try:
        if args.command == "login":
            login(tracker, args.email)
        elif args.command == "logout":
            tracker.sessions.logout()
            console.print("[bold green]✔ Logged out.[/bold green]")
        elif args.command == "session":
            show_session(tracker)
        elif args.command == "register":
            register_repo(tracker, args.path, args.name, args.description, args.project_id)
        elif args.command == "list":
            list_repos(tracker)
        elif args.command == "branches":
            list_branches(tracker, args.repo)
        elif args.command == "update":
            update_repo(tracker, args.repo, args.name, args.description)
        elif args.command == "remove":
            remove_repo(tracker, args.repo, args.yes)
        elif args.command == "extract":
            extract(tracker, args.repo, args.branch)
        elif args.command == "sync":
            with console.status("Syncing repositories...", spinner="dots"):
                report = tracker.sync_all()
            print_report("Sync", report)
        elif args.command == "status":
            with console.status("Probing repositories...", spinner="dots"):
                report = tracker.check_all_statuses()
            print_report("Status", report)
        elif args.command == "compare":
            compare_repos(tracker)
    except (NoSessionError, ReauthenticationRequiredError) as e:
        console.print(f"[bold red]✘ {e}[/bold red]\n[dim]Run 'git-tracker login'.[/dim]")
        sys.exit(1)
    except TransientError as e:
        console.print(f"[bold yellow]⚠ {e}[/bold yellow]\n[dim]Try again later.[/dim]")
        sys.exit(1)
    except InputError as e:
        console.print(f"[bold red]✘ {e}[/bold red]")
        sys.exit(2)
    except TrackerError as e:
        console.print(f"[bold red]✘ {e}[/bold red]")
        sys.exit(1)
    finally:
        tracker.close()


if __name__ == "__main__":
    main()
