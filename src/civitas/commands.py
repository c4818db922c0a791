"""
Civitas CLI commands.

Commands:
  civitas fingerprint     - Identity fingerprint for a (name, email) pair
  civitas email-proof     - Email-ownership proof a user presents to verify
  civitas demo            - Run the register -> quiz -> reward scenario
  civitas journal list    - List persisted audit traces
  civitas journal show    - Print the receipts of a trace
  civitas journal verify  - Check a trace's hash chain
  civitas version         - Show version info
"""

import json
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

civitas_app = typer.Typer(
    name="civitas",
    help="Rule engine for civic identity, quizzes and rewards",
    no_args_is_help=True,
)

DEMO_AUTHORITY = "civic-admin"
DEMO_CITIZEN = "citizen-alice"
DEMO_ELECTION = 7
DEMO_BALLOT_PROOF = b"ballot-7-receipt"


def _output_json(data: Dict[str, Any], exit_code: Optional[int] = None) -> None:
    """Print structured JSON to stdout and exit.

    Exit codes:
    - 0: success (status == "ok")
    - 1: error (status == "error" or "blocked")
    - 2: verification failed (status == "failed")
    - 3: bad input (unknown trace, invalid arguments)

    Can be overridden with explicit exit_code parameter.
    """
    print(json.dumps(data, indent=2, default=str))
    if exit_code is not None:
        raise typer.Exit(exit_code)
    status = data.get("status", "ok")
    if status == "ok":
        raise typer.Exit(0)
    elif status == "failed":
        raise typer.Exit(2)
    else:
        raise typer.Exit(1)


def _journal_reader():
    from civitas.config import civitas_home
    from civitas.journal import Journal

    return Journal(base_dir=civitas_home() / "journal")


@civitas_app.command("fingerprint")
def fingerprint_cmd(
    name: str = typer.Argument(..., help="Registered name"),
    email: str = typer.Argument(..., help="Registered email"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Compute the sybil-check fingerprint sha256(name + email)."""
    from civitas.digest import fingerprint

    fp = fingerprint(name, email)
    if output_json:
        _output_json({"command": "fingerprint", "status": "ok", "fingerprint": fp})
    console.print(fp)


@civitas_app.command("email-proof")
def email_proof_cmd(
    email: str = typer.Argument(..., help="Email address to prove ownership of"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Compute the hex-encoded proof sha256(email) used by identity verification."""
    from civitas.digest import email_proof

    proof = email_proof(email).hex()
    if output_json:
        _output_json({"command": "email-proof", "status": "ok", "proof_hex": proof})
    console.print(proof)


def _run_demo(persist: bool) -> Dict[str, Any]:
    """Scripted scenario against fresh components sharing one journal."""
    from civitas.clock import BlockClock
    from civitas.config import civitas_home
    from civitas.digest import email_proof
    from civitas.identity import IdentityRegistry
    from civitas.journal import Journal
    from civitas.quiz import QuizEngine
    from civitas.rewards import RewardLedger
    from civitas.settlement import RecordingSink
    from civitas.workflow import CivicWorkflow

    clock = BlockClock()
    journal = Journal(base_dir=civitas_home() / "journal" if persist else None)
    sink = RecordingSink()
    registry = IdentityRegistry(clock=clock, journal=journal)
    quizzes = QuizEngine(clock=clock, journal=journal)
    ledger = RewardLedger(clock=clock, journal=journal, settlement=sink)
    for component in (registry, quizzes, ledger):
        component.bind_authority(DEMO_AUTHORITY)

    flow = CivicWorkflow(registry, quizzes, ledger)
    steps: List[Dict[str, Any]] = []

    def record(step: str, result) -> None:
        steps.append({"step": step, "block": clock.height, **result.to_dict()})

    enrolment = flow.enroll(DEMO_CITIZEN, "Alice Citizen", 24, "alice@civic.example")
    for s in enrolment.steps:
        record(f"enroll:{s.step}", s.result)
    record("verify", registry.verify(DEMO_CITIZEN, email_proof("alice@civic.example")))

    questions = [
        {"text": "Who may vote in a municipal election?", "options": ["Residents", "Visitors", "Nobody", "Officials"], "correct_index": 0},
        {"text": "How often are council members elected?", "options": ["Monthly", "Every 4 years", "Never", "Daily"], "correct_index": 1},
    ]
    record("create_quiz:0", quizzes.create_quiz(DEMO_AUTHORITY, "Orientation", "Warm-up", questions[:1], 50))
    record("create_quiz:1", quizzes.create_quiz(DEMO_AUTHORITY, "Local Government", "Civics basics", questions, 50))

    clock.advance_to(100)
    lesson = flow.complete_quiz(DEMO_CITIZEN, 1, [0, 1])
    for s in lesson.steps:
        record(f"quiz:{s.step}", s.result)
    record("contribution", registry.increment_contributions(DEMO_CITIZEN))

    record("attest_election", ledger.attest_election(DEMO_AUTHORITY, DEMO_ELECTION, DEMO_BALLOT_PROOF))
    clock.advance_to(200)
    record("voting_bonus", ledger.claim_voting_bonus(DEMO_CITIZEN, DEMO_ELECTION, DEMO_BALLOT_PROOF))
    record("voting_bonus:repeat", ledger.claim_voting_bonus(DEMO_CITIZEN, DEMO_ELECTION, DEMO_BALLOT_PROOF))

    rewards = ledger.get_rewards(DEMO_CITIZEN)
    return {
        "trace_id": journal.trace_id,
        "trace_file": str(journal.trace_file) if journal.trace_file else None,
        "steps": steps,
        "rewards": rewards.model_dump() if rewards is not None else None,
        "total_minted": ledger.get_total_minted(),
        "settled": sink.total_for(DEMO_CITIZEN),
        "chain": journal.verify().to_dict(),
    }


@civitas_app.command("demo")
def demo_cmd(
    persist: bool = typer.Option(False, "--persist/--no-persist", help="Persist receipts to disk"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Run a scripted civic workflow and show each step's outcome.

    Registers and verifies a citizen, grades a quiz, claims the education
    reward and a voting bonus, then shows a repeated claim being refused.
    """
    outcome = _run_demo(persist)

    if output_json:
        _output_json({"command": "demo", "status": "ok", **outcome})

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("block", justify="right", style="dim")
    table.add_column("step", style="cyan")
    table.add_column("outcome")
    table.add_column("detail", style="dim")
    for step in outcome["steps"]:
        if step["ok"]:
            status = "[green]ok[/]"
            detail = str(step.get("value", ""))
        else:
            status = f"[red]{step['error']['code']}[/]"
            detail = step["error"]["message"]
        table.add_row(str(step["block"]), step["step"], status, detail)

    console.print()
    console.print(table)
    rewards = outcome["rewards"] or {}
    console.print(Panel.fit(
        f"tokens earned: [bold]{rewards.get('tokens_earned', 0)}[/]\n"
        f"total minted:  [bold]{outcome['total_minted']}[/]\n"
        f"journal:       {outcome['chain']['count']} receipts, "
        f"chain {'[green]intact[/]' if outcome['chain']['passed'] else '[red]broken[/]'}\n"
        f"trace:         {outcome['trace_id']}",
        title="civitas demo",
    ))


# ---------------------------------------------------------------------------
# Journal subcommands
# ---------------------------------------------------------------------------

journal_app = typer.Typer(
    name="journal",
    help="Inspect persisted audit traces",
    no_args_is_help=True,
)
civitas_app.add_typer(journal_app, name="journal")


@journal_app.command("list")
def journal_list_cmd(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum traces to list"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List recent traces under $CIVITAS_HOME/journal."""
    traces = _journal_reader().list_traces(limit=limit)

    if output_json:
        _output_json({"command": "journal list", "status": "ok", "traces": traces}, exit_code=0)

    if not traces:
        console.print(Panel.fit(
            "[yellow]No traces found.[/]\n\n"
            "Persist one with:\n"
            "  [bold]civitas demo --persist[/]",
            title="civitas journal list",
        ))
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("trace_id", style="cyan")
    table.add_column("date")
    table.add_column("size", justify="right", style="dim")
    for t in traces:
        table.add_row(t["trace_id"], t["date"], str(t["size_bytes"]))
    console.print(table)


@journal_app.command("show")
def journal_show_cmd(
    trace_id: str = typer.Argument(..., help="Trace ID to show"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Print every receipt in a trace."""
    entries = _journal_reader().read_trace(trace_id)
    if not entries:
        if output_json:
            _output_json({"command": "journal show", "status": "error", "error": f"Trace not found: {trace_id}"}, exit_code=3)
        console.print(f"[red]Trace not found: {trace_id}[/]")
        raise typer.Exit(3)

    if output_json:
        _output_json({"command": "journal show", "status": "ok", "trace_id": trace_id, "entries": entries})

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("seq", justify="right", style="dim")
    table.add_column("block", justify="right", style="dim")
    table.add_column("type", style="cyan")
    table.add_column("status")
    table.add_column("code", style="yellow")
    for e in entries:
        status = e.get("status", "")
        color = {"ok": "green", "rejected": "red"}.get(status, "yellow")
        table.add_row(str(e.get("seq")), str(e.get("block")), e.get("type", ""), f"[{color}]{status}[/]", e.get("code", ""))
    console.print(table)


@journal_app.command("verify")
def journal_verify_cmd(
    trace_id: str = typer.Argument(..., help="Trace ID to verify"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Check a trace's hash chain. Exit 0 intact, 2 tampered, 3 unknown trace."""
    from civitas.journal import verify_entries

    entries = _journal_reader().read_trace(trace_id)
    if not entries:
        if output_json:
            _output_json({"command": "journal verify", "status": "error", "error": f"Trace not found: {trace_id}"}, exit_code=3)
        console.print(f"[red]Trace not found: {trace_id}[/]")
        raise typer.Exit(3)

    check = verify_entries(entries)
    if output_json:
        _output_json({
            "command": "journal verify",
            "status": "ok" if check.passed else "failed",
            "trace_id": trace_id,
            **check.to_dict(),
        })

    if check.passed:
        console.print(f"[green]Chain intact[/]: {check.count} receipts, head {check.head_hash[:16]}...")
        return
    console.print(f"[red]Chain broken[/]: {len(check.errors)} error(s)")
    for err in check.errors:
        console.print(f"  [{err.code}] #{err.index}: {err.message}")
    raise typer.Exit(2)


@civitas_app.command("version")
def show_version(
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show Civitas version and configuration."""
    from civitas import __version__
    from civitas.config import civitas_home

    if output_json:
        _output_json({
            "command": "version",
            "status": "ok",
            "version": __version__,
            "home": str(civitas_home()),
            "components": ["identity", "quiz", "reward"],
        })

    console.print(f"[bold]Civitas {__version__}[/]")
    console.print("Rule engine for civic identity, quizzes and rewards")
    console.print(f"home: {civitas_home()}")
