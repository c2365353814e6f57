"""SecureVault CLI - Password-bound encrypted file vault."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from .. import __version__
from ..utils import format_size, setup_logging, user_message
from ..vault import FileEntry, VaultError, VaultManager

app = typer.Typer(
    name="securevault",
    help="Encrypted file vault bound to the operator's password.",
    no_args_is_help=True,
)

console = Console()

USERNAME_OPTION = typer.Option(
    ..., "--username", "-u", prompt=True, help="Operator name"
)
PASSWORD_OPTION = typer.Option(
    ..., "--password", "-p", prompt=True, hide_input=True, help="Operator password"
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Configure logging for every command."""
    setup_logging(level="DEBUG" if verbose else "WARNING")


@contextmanager
def _errors() -> Iterator[None]:
    """Print a sanitized message and exit 1 on any vault or file error."""
    try:
        yield
    except (VaultError, ValueError, OSError) as e:
        console.print(f"[red]Error: {user_message(e)}[/red]")
        raise typer.Exit(1)


def _open_vault(username: str, password: str) -> VaultManager:
    """Open the vault in the user's home directory and log in."""
    vm = VaultManager()
    if not vm.catalog.is_initialized():
        console.print("[red]Error: Vault not initialized. Run 'securevault init' first.[/red]")
        raise typer.Exit(1)
    vm.initialize()
    vm.login(username, password)
    return vm


def _entries_table(title: str, entries: list[FileEntry]) -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Added")
    table.add_column("Tags")
    table.add_column("Description")

    for entry in entries:
        table.add_row(
            str(entry.id),
            entry.original_name,
            entry.file_type or "-",
            format_size(entry.file_size),
            entry.date_added.strftime("%Y-%m-%d %H:%M"),
            entry.tags,
            entry.description,
        )
    return table


def _require_entry(vm: VaultManager, entry_id: int) -> FileEntry:
    entry = vm.get(entry_id)
    if entry is None:
        console.print(f"[red]Error: No file with ID {entry_id}[/red]")
        raise typer.Exit(1)
    return entry


@app.command()
def init():
    """
    Create the vault in the home directory.

    On first run a default operator 'admin' with password 'admin123' is
    created; change it with 'securevault passwd'.
    """
    with _errors():
        vm = VaultManager()
        fresh = not vm.catalog.is_initialized()
        outcome = vm.initialize()

    if outcome:
        console.print(f"[yellow]Finished an interrupted password change ({outcome}).[/yellow]")
    if fresh:
        console.print("[green]Vault created.[/green]")
        console.print("Default operator: admin / admin123")
        console.print("Change it now with: securevault passwd")
    else:
        console.print("Vault already initialized.")


@app.command()
def login(
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
):
    """Check operator credentials."""
    with _errors():
        with _open_vault(username, password) as vm:
            operator = vm.current_operator()

    console.print(f"[green]Authenticated as {operator.username}[/green]")
    console.print(f"Operator since: {operator.created_at.strftime('%Y-%m-%d')}")


@app.command()
def add(
    files: list[Path] = typer.Argument(..., help="Files to encrypt into the vault"),
    description: str = typer.Option("", "--description", "-d", help="Description"),
    tags: str = typer.Option("", "--tags", "-t", help="Tags"),
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
):
    """Encrypt one or more files into the vault."""
    with _errors():
        with _open_vault(username, password) as vm:
            for file_path in files:
                entry = vm.add(file_path, description=description, tags=tags)
                console.print(
                    f"Added [cyan]{entry.original_name}[/cyan] "
                    f"(ID {entry.id}, {format_size(entry.file_size)})"
                )

    console.print(f"\n[green]{len(files)} file(s) stored.[/green]")


@app.command()
def get(
    entry_id: int = typer.Argument(..., help="ID of the file to restore"),
    output: Path = typer.Option(
        None,
        "--output", "-o",
        help="Output directory (default: current directory)",
    ),
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
):
    """Decrypt a file out of the vault."""
    if output is None:
        output = Path.cwd()

    with _errors():
        with _open_vault(username, password) as vm:
            entry = _require_entry(vm, entry_id)
            restored = vm.retrieve(entry, output)

    console.print(f"[green]Restored {entry.original_name} as {restored.name}[/green]")


@app.command()
def rm(
    entry_id: int = typer.Argument(..., help="ID of the file to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
):
    """Delete a file from the vault."""
    with _errors():
        with _open_vault(username, password) as vm:
            entry = _require_entry(vm, entry_id)
            if not yes and not typer.confirm(f"Delete {entry.original_name}?"):
                console.print("Cancelled.")
                raise typer.Exit(0)
            removed = vm.delete(entry)

    if removed:
        console.print(f"[green]Deleted {entry.original_name}[/green]")
    else:
        console.print(f"[yellow]{entry.original_name} was already removed[/yellow]")


@app.command()
def ls(
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
):
    """List stored files, newest first."""
    with _errors():
        with _open_vault(username, password) as vm:
            entries = vm.list_files()

    if not entries:
        console.print("Vault is empty.")
        return
    console.print(_entries_table(f"Files ({len(entries)})", entries))


@app.command()
def search(
    term: str = typer.Argument(..., help="Text to find in names, tags or descriptions"),
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
):
    """Search stored files (case-insensitive)."""
    with _errors():
        with _open_vault(username, password) as vm:
            entries = vm.search(term)

    if not entries:
        console.print(f"No files match '{term}'.")
        return
    console.print(_entries_table(f"Matches for '{term}' ({len(entries)})", entries))


@app.command()
def passwd(
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
    new_password: str = typer.Option(
        ...,
        "--new-password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="New password",
    ),
    new_username: Optional[str] = typer.Option(
        None,
        "--new-username",
        help="Also change the operator name",
    ),
):
    """
    Change the operator password.

    Every stored file is re-encrypted under the new password. If anything
    fails, all files are restored and the current password keeps working.
    """
    with _errors():
        with _open_vault(username, password) as vm:
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("Re-encrypting", total=None)

                def on_progress(message: str, current: int, total: int) -> None:
                    progress.update(task, description=message, completed=current, total=total)

                operator = vm.change_password(
                    password,
                    new_password,
                    new_name=new_username,
                    progress_callback=on_progress,
                )

    console.print(f"[green]Password changed for {operator.username}.[/green]")


@app.command()
def stats(
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
):
    """Show file count and total stored size."""
    with _errors():
        with _open_vault(username, password) as vm:
            vault_stats = vm.stats()

    console.print("\n[bold]Vault Statistics[/bold]")
    console.print(f"Files: {vault_stats.file_count}")
    console.print(f"Total size: {vault_stats.total_size_display}")


@app.command()
def space(
    username: str = USERNAME_OPTION,
    password: str = PASSWORD_OPTION,
):
    """Show disk space available to the vault."""
    with _errors():
        with _open_vault(username, password) as vm:
            status = vm.space_status()

    table = Table(title="Disk Space")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Free", status.free_display)
    table.add_row("Total", status.total_display)
    table.add_row("Used", f"{status.usage_fraction:.1%}")
    table.add_row("Minimum buffer", "[green]yes[/green]" if status.has_min else "[red]no[/red]")
    table.add_row(
        "Recommended buffer",
        "[green]yes[/green]" if status.has_recommended else "[yellow]no[/yellow]",
    )
    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"SecureVault v{__version__}")
    console.print("Password-bound encrypted file vault")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
