"""Command-line interface for bookledger.

Built with Typer for commands and Rich for output.
"""

import logging
from typing import Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .checkout import CheckoutLedger, CreateCheckout, UpdateReturned, retry_on_conflict
from .checkout.schemas import Checkout
from .config import get_config
from .db import BookCreate, close_db, get_db, init_db
from .errors import LedgerError
from .log import setup_logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Create the main app
app = typer.Typer(
    name="bookledger",
    help="Lend books and keep their checkout history.",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def get_ledger() -> CheckoutLedger:
    return CheckoutLedger(get_db())


def run_ledger_operation(operation: Callable[[], T]) -> T:
    """Run a ledger call with the configured retry policy.

    Client errors and invalid input print their message and exit with code 1;
    anything else is logged and reported generically with exit code 2.
    """
    config = get_config()
    try:
        return retry_on_conflict(
            operation,
            max_attempts=config.retry_max,
            initial_backoff=config.retry_backoff,
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except LedgerError as e:
        if e.is_client_error:
            print_error(e.message)
            raise typer.Exit(1)
        logger.error("Unexpected error: %s %s", e.message, e.details, exc_info=e)
        print_error("Unexpected error, see the log for details.")
        raise typer.Exit(2)


def format_checkout_table(checkouts: list[Checkout], title: str) -> Table:
    """Create a rich table for displaying checkouts."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Checkout", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("User", style="yellow")
    table.add_column("Checked out")
    table.add_column("Returned")

    for c in checkouts:
        table.add_row(
            c.id,
            c.book.title,
            c.book.author,
            c.checked_out_by,
            c.checked_out_at.strftime("%Y-%m-%d %H:%M"),
            c.returned_at.strftime("%Y-%m-%d %H:%M") if c.returned_at else "-",
        )

    return table


@app.callback()
def main_callback(ctx: typer.Context) -> None:
    """Configure logging and release the database when the command ends."""
    try:
        config = get_config()
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(1)

    errors = config.validate()
    if errors:
        for error in errors:
            print_error(error)
        raise typer.Exit(1)

    setup_logging(config.log_level)
    ctx.call_on_close(close_db)


# ============================================================================
# Book Commands
# ============================================================================


@app.command("init-db")
def init_db_command() -> None:
    """Create the database tables."""
    db = init_db()
    print_success(f"Database ready at {db.url.render_as_string(hide_password=True)}")


@app.command("add-book")
def add_book(
    title: str = typer.Argument(..., help="Book title"),
    author: str = typer.Option(..., "--author", "-a", help="Author name"),
    isbn: str = typer.Option(..., "--isbn", "-i", help="ISBN"),
    description: str = typer.Option("", "--description", "-d", help="Description"),
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Owner user id"),
) -> None:
    """Add a book that can be lent out."""
    try:
        data = BookCreate(
            title=title,
            author=author,
            isbn=isbn,
            description=description,
            owner_id=owner,
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    book = get_db().create_book(data)
    print_success(f"Added '{book.title}' ({book.id})")


@app.command("books")
def list_books() -> None:
    """List all books."""
    books = get_db().list_books()
    if not books:
        console.print("[dim]No books found.[/dim]")
        return

    table = Table(title="Books", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("ISBN")
    for book in books:
        table.add_row(book.id, book.title, book.author, book.isbn)
    console.print(table)


# ============================================================================
# Checkout Commands
# ============================================================================


@app.command("checkout")
def checkout(
    book_id: str = typer.Argument(..., help="Book ID"),
    user: str = typer.Option(..., "--user", "-u", help="Borrowing user id"),
) -> None:
    """Lend a book to a user."""
    try:
        event = CreateCheckout(book_id=book_id, checked_out_by=user)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    ledger = get_ledger()
    checkout_id = run_ledger_operation(lambda: ledger.create(event))
    print_success(f"Book checked out (checkout {checkout_id})")


@app.command("return")
def return_book(
    book_id: str = typer.Argument(..., help="Book ID"),
    checkout_id: str = typer.Argument(..., help="Checkout ID"),
    user: str = typer.Option(..., "--user", "-u", help="Returning user id"),
) -> None:
    """Return a checked-out book."""
    try:
        event = UpdateReturned(checkout_id=checkout_id, book_id=book_id, returned_by=user)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    ledger = get_ledger()
    run_ledger_operation(lambda: ledger.update_returned(event))
    print_success("Book returned")


@app.command("loans")
def loans(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user's loans"),
) -> None:
    """List books currently checked out, oldest first."""
    ledger = get_ledger()
    if user:
        checkouts = run_ledger_operation(lambda: ledger.find_unreturned_by_user_id(user))
    else:
        checkouts = run_ledger_operation(ledger.find_unreturned_all)

    if not checkouts:
        console.print("[dim]No active checkouts.[/dim]")
        return
    console.print(format_checkout_table(checkouts, "Active checkouts"))


@app.command("history")
def history(book_id: str = typer.Argument(..., help="Book ID")) -> None:
    """Show a book's checkout history, current checkout first."""
    ledger = get_ledger()
    checkouts = run_ledger_operation(lambda: ledger.find_history_by_book_id(book_id))

    if not checkouts:
        console.print("[dim]No checkout history.[/dim]")
        return
    console.print(format_checkout_table(checkouts, "Checkout history"))


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"bookledger version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()
