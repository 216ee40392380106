"""CLI for RoomLedger using Typer."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .exceptions import PartialWriteError, RoomLedgerError, ValidationError
from .models import Member, ParticipantRef, SettlementGroup, SettlementStatus
from .money import format_inr, parse_inr
from .protocol import available_transitions, can_cancel, role_of
from .service import SettlementService, open_backend
from .ui import confirm_action, select_participant_interactive

app = typer.Typer(
    name="roomledger",
    help="Shared expenses, balances and settlements for a household",
)
members_app = typer.Typer(help="Household roster")
expense_app = typer.Typer(help="Shared expenses")
settle_app = typer.Typer(help="Settle balances between two people")

app.add_typer(members_app, name="members")
app.add_typer(expense_app, name="expense")
app.add_typer(settle_app, name="settle")

console = Console()

NEXT_STEPS = {
    SettlementStatus.DEBTOR_PAID: "paid",
    SettlementStatus.SETTLED: "confirm",
}

STATUS_STYLES = {
    SettlementStatus.PENDING: "[yellow]pending[/yellow]",
    SettlementStatus.DEBTOR_PAID: "[cyan]awaiting confirmation[/cyan]",
    SettlementStatus.SETTLED: "[green]settled[/green]",
}

ActingOption = typer.Option(..., "--as", help="Account (email, id or name) acting")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose output")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@contextmanager
def open_service(verbose: bool = False) -> Iterator[SettlementService]:
    """Open the configured backend and report RoomLedger errors cleanly."""
    setup_logging(verbose)
    backend = None
    try:
        settings = load_settings()
        backend = open_backend(settings)
        yield SettlementService.from_backend(backend, settings)
    except RoomLedgerError as e:
        if isinstance(e, PartialWriteError) and not e.mixed_status:
            # Own row is stored; only the other party's copy is missing
            console.print(f"\n[bold yellow]Warning:[/bold yellow] {e}")
            return
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if isinstance(e, PartialWriteError):
            console.print(
                f"[yellow]Run 'roomledger settle repair {e.transaction_group_id}' "
                f"to finish it.[/yellow]"
            )
        if verbose:
            raise
        raise typer.Exit(1) from e
    finally:
        if backend is not None:
            backend.close()


def format_money(amount: Decimal, use_color: bool = True) -> str:
    """
    Format a balance with its sign shown by color.

    Positive (owed to them) is green, negative (they owe) is red.
    """
    formatted = format_inr(amount)
    if not use_color or amount == 0:
        return formatted
    color = "green" if amount > 0 else "red"
    return f"[{color}]{formatted}[/{color}]"


def parse_amount(raw: str) -> Decimal:
    """Parse a user-entered amount such as "1,200" or "₹1,200.50"."""
    try:
        return parse_inr(raw)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def next_moves(group: SettlementGroup, viewer: ParticipantRef) -> str:
    """Commands the viewer can run on a group next."""
    role = role_of(group, viewer.account_id)
    if role is None:
        return ""
    if not group.is_consistent():
        return "repair"
    moves = [NEXT_STEPS[status] for status in available_transitions(group, role)]
    if can_cancel(group, viewer.account_id):
        moves.append("cancel")
    return ", ".join(moves)


def display_groups(groups: list[SettlementGroup], title: str, viewer: ParticipantRef):
    """Display settlement groups in a table."""
    if not groups:
        console.print(f"[yellow]No {title.lower()}.[/yellow]")
        return

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Group", style="dim", no_wrap=True)
    table.add_column("Debtor", style="cyan")
    table.add_column("Creditor", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Both sides", justify="center")
    table.add_column("Your move")

    for group in groups:
        consistent = group.is_consistent()
        table.add_row(
            group.transaction_group_id,
            group.debtor.name,
            group.creditor.name,
            format_inr(group.amount if consistent else group.records[0].amount),
            STATUS_STYLES[group.status] if consistent else "[red]needs repair[/red]",
            "✓" if group.is_mirrored else "—",
            next_moves(group, viewer),
        )

    console.print(table)


def _pick(service: SettlementService, value: str | None, prompt: str) -> str:
    if value:
        return value
    members: list[Member] = service.members()
    picked = select_participant_interactive(members, prompt=prompt)
    if picked is None:
        console.print("[yellow]No participant selected.[/yellow]")
        raise typer.Exit(1)
    return picked


# ============================================================================
# Members
# ============================================================================


@members_app.command("add")
def members_add(
    name: str = typer.Argument(..., help="Display name"),
    email: str | None = typer.Option(None, "--email", "-e"),
    account_id: str | None = typer.Option(None, "--account-id", help="Registered account id"),
    upi_id: str | None = typer.Option(None, "--upi", help="UPI id for payments"),
    verbose: bool = VerboseOption,
):
    """Add a member to the household roster."""
    with open_service(verbose) as service:
        add_member = getattr(service.resolver, "add_member", None)
        if add_member is None:
            console.print("[red]This backend manages members itself.[/red]")
            raise typer.Exit(1)
        add_member(Member(name=name, email=email, account_id=account_id, upi_id=upi_id))
        console.print(f"[green]✓ Added {name}[/green]")


@members_app.command("list")
def members_list(verbose: bool = VerboseOption):
    """List the household roster."""
    with open_service(verbose) as service:
        table = Table(title="Members", show_header=True, header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Email")
        table.add_column("Account", style="dim")
        table.add_column("UPI")
        for member in service.members():
            table.add_row(
                member.name,
                member.email or "—",
                member.account_id or "—",
                member.upi_id or "—",
            )
        console.print(table)


# ============================================================================
# Expenses
# ============================================================================


@expense_app.command("add")
def expense_add(
    description: str = typer.Argument(..., help="What was bought"),
    amount: str = typer.Argument(..., help="Amount paid"),
    paid_by: str = typer.Option(..., "--paid-by", "-p", help="Who paid"),
    sharers: list[str] = typer.Option(
        [], "--sharer", "-s", help="Who shares it (repeat; default: everyone)"
    ),
    category: str = typer.Option("General", "--category", "-c"),
    on: str | None = typer.Option(None, "--date", help="YYYY-MM-DD (default: today)"),
    verbose: bool = VerboseOption,
):
    """Record a shared expense split equally between its sharers."""
    with open_service(verbose) as service:
        expense = service.add_expense(
            description,
            parse_amount(amount),
            paid_by,
            sharers=sharers,
            category=category,
            on=date.fromisoformat(on) if on else None,
        )
        console.print(
            f"[green]✓ Added {expense.description} "
            f"({format_inr(expense.amount)}) as {expense.id}[/green]"
        )


@expense_app.command("list")
def expense_list(verbose: bool = VerboseOption):
    """List expenses, newest first, with category totals."""
    with open_service(verbose) as service:
        expenses = service.list_expenses()
        if not expenses:
            console.print("[yellow]No expenses yet.[/yellow]")
            return

        table = Table(title="Expenses", show_header=True, header_style="bold magenta")
        table.add_column("Date", style="dim")
        table.add_column("Description", style="cyan")
        table.add_column("Category", style="yellow")
        table.add_column("Paid by")
        table.add_column("Shared by")
        table.add_column("Amount", justify="right")
        table.add_column("ID", style="dim")
        for expense in expenses:
            table.add_row(
                expense.date.isoformat(),
                expense.description,
                expense.category,
                expense.paid_by.name,
                ", ".join(s.name for s in expense.sharers) or "everyone",
                format_inr(expense.amount),
                expense.id,
            )
        console.print(table)

        summary = service.expense_summary()
        console.print(f"\n[bold]Total:[/bold] {format_inr(summary.total)}")
        for category, total in summary.by_category.items():
            console.print(f"  {category}: {format_inr(total)}")


@expense_app.command("delete")
def expense_delete(
    expense_id: str = typer.Argument(...),
    verbose: bool = VerboseOption,
):
    """Delete an expense."""
    with open_service(verbose) as service:
        if service.delete_expense(expense_id):
            console.print(f"[green]✓ Deleted {expense_id}[/green]")
        else:
            console.print(f"[yellow]No expense {expense_id}.[/yellow]")


# ============================================================================
# Balances
# ============================================================================


@app.command()
def balances(
    acting: str | None = typer.Option(
        None, "--as", help="Show settlement state relative to this account"
    ),
    verbose: bool = VerboseOption,
):
    """Show what everyone is owed (+) or owes (-) after settled payments."""
    with open_service(verbose) as service:
        table = Table(title="Balances", show_header=True, header_style="bold magenta")
        table.add_column("Participant", style="cyan")
        table.add_column("Balance", justify="right")

        if acting:
            table.add_column("Settlement")
            lines = service.balance_overview(service.acting_participant(acting))
            for line in lines:
                status = line.settlement_status
                table.add_row(
                    line.participant.name,
                    format_money(line.balance),
                    STATUS_STYLES[status] if status else "",
                )
        else:
            for participant, balance in service.compute_balances().items():
                table.add_row(participant.name, format_money(balance))

        console.print(table)


# ============================================================================
# Settlements
# ============================================================================


@settle_app.command("request")
def settle_request(
    debtor: str | None = typer.Argument(None, help="Who owes you"),
    amount: str | None = typer.Argument(None, help="Amount (default: outstanding)"),
    acting: str = ActingOption,
    upi: str | None = typer.Option(None, "--upi", help="UPI id to pay to"),
    verbose: bool = VerboseOption,
):
    """Ask someone who owes you to pay."""
    with open_service(verbose) as service:
        me = service.acting_participant(acting)
        other = service.resolve_participant(_pick(service, debtor, "Debtor: "))
        value = parse_amount(amount) if amount else service.outstanding_with(me, other)
        if value is None:
            console.print(f"[yellow]Nothing to settle with {other.name}.[/yellow]")
            raise typer.Exit(1)
        group_id = service.request_payment(me, other, value, upi_ref=upi)
        console.print(f"[green]✓ Requested payment from {other.name} ({group_id})[/green]")


@settle_app.command("owe")
def settle_owe(
    creditor: str | None = typer.Argument(None, help="Who you owe"),
    amount: str | None = typer.Argument(None, help="Amount (default: outstanding)"),
    acting: str = ActingOption,
    paid: bool = typer.Option(
        False, "--paid", help="Record that you have already paid"
    ),
    verbose: bool = VerboseOption,
):
    """Record a debt you owe, optionally as already paid."""
    with open_service(verbose) as service:
        me = service.acting_participant(acting)
        other = service.resolve_participant(_pick(service, creditor, "Creditor: "))
        value = parse_amount(amount) if amount else service.outstanding_with(me, other)
        if value is None:
            console.print(f"[yellow]Nothing to settle with {other.name}.[/yellow]")
            raise typer.Exit(1)
        if paid:
            group_id = service.record_payment(me, other, value)
            console.print(
                f"[green]✓ Recorded payment to {other.name}; "
                f"waiting for confirmation ({group_id})[/green]"
            )
        else:
            group_id = service.record_obligation(me, other, value)
            console.print(f"[green]✓ Recorded debt to {other.name} ({group_id})[/green]")


@settle_app.command("receive")
def settle_receive(
    debtor: str | None = typer.Argument(None, help="Who paid you"),
    amount: str | None = typer.Argument(None, help="Amount (default: outstanding)"),
    acting: str = ActingOption,
    verbose: bool = VerboseOption,
):
    """Mark money from a debtor as received, settling it immediately."""
    with open_service(verbose) as service:
        me = service.acting_participant(acting)
        other = service.resolve_participant(_pick(service, debtor, "Debtor: "))
        value = parse_amount(amount) if amount else service.outstanding_with(me, other)
        if value is None:
            console.print(f"[yellow]Nothing to settle with {other.name}.[/yellow]")
            raise typer.Exit(1)
        group_id = service.settle_instantly(me, other, value)
        console.print(f"[green]✓ Settled with {other.name} ({group_id})[/green]")


@settle_app.command("paid")
def settle_paid(
    group_id: str = typer.Argument(..., help="Transaction group id"),
    acting: str = ActingOption,
    verbose: bool = VerboseOption,
):
    """As the debtor, mark a pending settlement as paid."""
    with open_service(verbose) as service:
        group = service.mark_debtor_paid(service.acting_participant(acting), group_id)
        console.print(
            f"[green]✓ Marked as paid; waiting for {group.creditor.name} to confirm[/green]"
        )


@settle_app.command("confirm")
def settle_confirm(
    group_id: str = typer.Argument(..., help="Transaction group id"),
    acting: str = ActingOption,
    verbose: bool = VerboseOption,
):
    """As the creditor, confirm the money arrived."""
    with open_service(verbose) as service:
        group = service.confirm_receipt(service.acting_participant(acting), group_id)
        console.print(
            f"[green]✓ Settled {format_inr(group.amount)} from {group.debtor.name}[/green]"
        )


@settle_app.command("cancel")
def settle_cancel(
    group_id: str = typer.Argument(..., help="Transaction group id"),
    acting: str = ActingOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = VerboseOption,
):
    """Cancel an unsettled settlement for both parties."""
    with open_service(verbose) as service:
        me = service.acting_participant(acting)
        if not yes and not confirm_action(f"Cancel settlement {group_id}?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return
        service.cancel(me, group_id)
        console.print(f"[green]✓ Removed settlement {group_id}[/green]")


@settle_app.command("repair")
def settle_repair(
    group_id: str = typer.Argument(..., help="Transaction group id"),
    acting: str = ActingOption,
    verbose: bool = VerboseOption,
):
    """Finish a settlement a failed write left half-recorded."""
    with open_service(verbose) as service:
        group = service.repair(service.acting_participant(acting), group_id)
        console.print(f"[green]✓ {group_id} is {STATUS_STYLES[group.status]}[/green]")
        if group.is_mirrored:
            console.print(f"[green]✓ {group_id} is recorded for both parties[/green]")
        else:
            console.print(
                f"[yellow]{group_id} stays one-sided: no account found for "
                f"the other party.[/yellow]"
            )


@settle_app.command("list")
def settle_list(
    acting: str = ActingOption,
    history: bool = typer.Option(False, "--history", help="Show settled groups"),
    verbose: bool = VerboseOption,
):
    """List your open settlements, or your settled history."""
    with open_service(verbose) as service:
        me = service.acting_participant(acting)
        if history:
            display_groups(service.settlement_history(me), "Settled Settlements", me)
        else:
            display_groups(service.pending_groups(me), "Pending Settlements", me)


if __name__ == "__main__":
    app()
