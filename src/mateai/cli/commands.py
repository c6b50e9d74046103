"""CLI commands for Mate AI.

Commands:
- login / logout / whoami: backend session stored in data/state/session_v1.json
- practice: interactive AI practice session
- test: solve a teacher-assigned test
- reports: list previous performance reports
- serve: run the Web API
"""

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mateai.config import load_app_config
from mateai.core.ai_orchestrator import AIOrchestrator
from mateai.core.backend_gateway import BackendGateway
from mateai.core.errors import InvalidTransition, MateAIError, TransportError, UserInputError
from mateai.core.session import PracticeSession, RevealOutcome, SessionState
from mateai.core.session_context import SessionContext
from mateai.llm.client import LLMClient, LLMConfig

app = typer.Typer(
    name="mateai",
    help="Práctica de matemáticas con IA para estudiantes de Mate AI.",
    no_args_is_help=True,
)

console = Console()

MESSAGE_STYLES = {"error": "red", "info": "blue", "success": "green"}

HINT_COMMAND = "?"
GIVE_UP_COMMAND = "-"


def _load_context() -> SessionContext:
    config = load_app_config()
    return SessionContext(state_dir=config.state_dir).load()


def _gateway(context: SessionContext) -> BackendGateway:
    config = load_app_config()
    return BackendGateway(
        base_url=config.backend.base_url,
        context=context,
        timeout=config.backend.timeout,
    )


def _require_login(context: SessionContext) -> None:
    if not context.is_authenticated:
        console.print("[red]✗ No has iniciado sesión[/red]")
        console.print("  Ejecuta: mateai login")
        raise typer.Exit(code=1)


def _orchestrator(
    gateway: BackendGateway | None, provider: str | None, model: str | None
) -> AIOrchestrator:
    client = LLMClient(LLMConfig.from_yaml(), provider=provider, model=model)  # type: ignore[arg-type]
    return AIOrchestrator(
        client,
        gateway=gateway,
        prior_reports_limit=load_app_config().practice.prior_reports_limit,
    )


def _print_message(session: PracticeSession) -> None:
    if session.message is not None:
        style = MESSAGE_STYLES.get(session.message.kind, "white")
        console.print(f"[{style}]{session.message.text}[/{style}]")


def _show_exercise(session: PracticeSession) -> None:
    exercise = session.current_exercise
    assert exercise is not None
    header = f"[bold]{session.index + 1}/{len(session.exercises)}[/bold]"
    remaining = session.remaining_seconds
    if remaining is not None:
        header += f"  [dim]tiempo restante {remaining // 60}:{remaining % 60:02d}[/dim]"
    console.print(Panel(exercise.statement, title=header, expand=False))
    for i, option in enumerate(exercise.options, 1):
        console.print(f"  {i}. {option}")


def _resolve_option(session: PracticeSession, raw: str) -> str:
    """Allow answering a multiple-choice exercise by option number."""
    exercise = session.current_exercise
    if exercise is not None and exercise.options and raw.isdigit():
        n = int(raw)
        if 1 <= n <= len(exercise.options):
            return exercise.options[n - 1]
    return raw


def _show_reveal(session: PracticeSession) -> None:
    exercise = session.current_exercise
    assert exercise is not None
    if session.outcome == RevealOutcome.FAILED:
        console.print(f"  [dim]respuesta correcta:[/dim] {exercise.correct_answer}")
    console.print(f"  [dim]explicación:[/dim] {exercise.explanation}")


def _show_summary(session: PracticeSession) -> None:
    stats = session.stats
    if stats is None:
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Total")
    table.add_column("Correctas", style="green")
    table.add_column("Incorrectas", style="red")
    table.add_column("Puntuación")
    table.add_row(str(stats.total), str(stats.correct), str(stats.incorrect), f"{stats.score}%")
    console.print(table)

    if session.report is not None:
        console.print(Panel(session.report.detailed_report, title="Reporte", expand=False))
        console.print(Panel(session.report.advice, title="Consejos", expand=False))


def _run_session(session: PracticeSession) -> None:
    """Drive a started session until it completes."""
    allow_give_up = session.max_attempts is None

    while session.state != SessionState.COMPLETED:
        session.tick()

        if session.state == SessionState.ANSWERING:
            _show_exercise(session)
            help_text = f"'{HINT_COMMAND}' para pista"
            if allow_give_up:
                help_text += f", '{GIVE_UP_COMMAND}' para pasar"
            raw = typer.prompt(f"Respuesta ({help_text})", default="", show_default=False).strip()

            if raw == HINT_COMMAND:
                hint = session.request_hint()
                console.print(f"[yellow]💡 {hint}[/yellow]")
                continue
            if raw == GIVE_UP_COMMAND and allow_give_up:
                session.give_up()
            else:
                session.submit_answer(_resolve_option(session, raw))
            _print_message(session)

        if session.state == SessionState.REVEALED:
            _show_reveal(session)
            typer.prompt("Enter para continuar", default="", show_default=False)
            session.advance()
            _print_message(session)

    _show_summary(session)


# =============================================================================
# SESSION COMMANDS
# =============================================================================


@app.command()
def login(
    email: str = typer.Option(..., "--email", "-e", prompt="Correo", help="Account email"),
    password: str = typer.Option(
        ..., "--password", prompt="Contraseña", hide_input=True, help="Account password"
    ),
) -> None:
    """Log in to the Mate AI backend and remember the session."""
    context = _load_context()
    try:
        with _gateway(context) as gateway:
            auth = gateway.login(email, password)
    except TransportError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    user = auth.get("usuario") or {}
    console.print(f"[green]✓ Sesión iniciada como {user.get('nombre', email)}[/green]")
    if user.get("rol"):
        console.print(f"  [dim]rol:[/dim]    {user['rol']}")
    if user.get("grado"):
        console.print(f"  [dim]grado:[/dim]  {user['grado']}")


@app.command()
def logout() -> None:
    """Forget the stored session."""
    context = _load_context()
    context.clear()
    console.print("[green]✓ Sesión cerrada[/green]")


@app.command()
def whoami() -> None:
    """Show the logged-in user."""
    context = _load_context()
    _require_login(context)
    user = context.user or {}
    console.print(f"[bold]{user.get('nombre', '')} {user.get('apellido', '')}[/bold]".strip())
    console.print(f"  [dim]correo:[/dim] {user.get('correo', '')}")
    console.print(f"  [dim]rol:[/dim]    {user.get('rol', '')}")
    if user.get("grado"):
        console.print(f"  [dim]grado:[/dim]  {user['grado']}")


# =============================================================================
# PRACTICE COMMANDS
# =============================================================================


@app.command()
def practice(
    topic: str = typer.Option(..., "--topic", "-t", prompt="Tema", help="Math topic"),
    difficulty: str | None = typer.Option(
        None, "--difficulty", "-d", help="Difficulty: basica, media, avanzada"
    ),
    count: int | None = typer.Option(None, "--count", "-n", help="Number of exercises"),
    grade: str | None = typer.Option(None, "--grade", "-g", help="Grade (defaults to profile)"),
    provider: str | None = typer.Option(
        None, "--provider", "-p", help="LLM provider: perplexity, openai, lmstudio"
    ),
    model: str | None = typer.Option(None, "--model", "-m", help="Model name (overrides config)"),
) -> None:
    """Practice AI-generated exercises.

    When logged in, exercises are personalized with previous reports and the
    final report is saved to the backend.
    """
    config = load_app_config()
    context = _load_context()
    gateway = _gateway(context) if context.is_authenticated else None

    session = PracticeSession(
        _orchestrator(gateway, provider, model),
        gateway,
        max_attempts=config.practice.max_attempts,
        hints_per_exercise=config.practice.hints_per_exercise,
        default_grade=config.practice.default_grade,
        default_count=config.practice.default_count,
        default_difficulty=config.practice.default_difficulty,
    )
    try:
        session.configure(topic=topic, difficulty=difficulty, count=count, grade=grade)
    except UserInputError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    console.print(
        f"[blue]Generando {session.count} ejercicios de {session.topic} "
        f"({session.difficulty}, grado {session.grade})...[/blue]"
    )
    session.start()
    if session.state == SessionState.CONFIGURING:
        _print_message(session)
        raise typer.Exit(code=1)

    _run_session(session)
    if gateway is not None:
        gateway.close()


@app.command(name="test")
def solve_test(
    assignment_id: str = typer.Argument(..., help="Assignment ID"),
    provider: str | None = typer.Option(
        None, "--provider", "-p", help="LLM provider: perplexity, openai, lmstudio"
    ),
    model: str | None = typer.Option(None, "--model", "-m", help="Model name (overrides config)"),
) -> None:
    """Solve a teacher-assigned test."""
    context = _load_context()
    _require_login(context)

    with _gateway(context) as gateway:
        try:
            session = PracticeSession.from_assignment(
                _orchestrator(gateway, provider, model),
                gateway,
                assignment_id,
                default_grade=load_app_config().practice.default_grade,
            )
        except MateAIError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1)

        assert session.assigned is not None
        console.print(f"[bold]{session.assigned.title}[/bold]")
        if session.assigned.description:
            console.print(f"  [dim]{session.assigned.description}[/dim]")
        _print_message(session)

        try:
            _run_session(session)
        except InvalidTransition as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1)


@app.command()
def reports(
    limit: int = typer.Option(10, "--limit", "-l", help="Number of reports"),
) -> None:
    """List your previous performance reports."""
    context = _load_context()
    _require_login(context)

    try:
        with _gateway(context) as gateway:
            items = gateway.student_reports(context.user_id or "", limit=limit)
    except TransportError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    if not items:
        console.print("[yellow]No hay reportes todavía[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Fecha")
    table.add_column("Tema")
    table.add_column("Tipo")
    table.add_column("Correctas")
    table.add_column("Puntuación")
    for item in items:
        table.add_row(
            str(item.get("fechaRealizacion", ""))[:10],
            str(item.get("tema", "")),
            str(item.get("tipoPractica", "")),
            f"{item.get('respuestasCorrectas', 0)}/{item.get('totalPreguntas', 0)}",
            f"{item.get('puntuacion', 0)}%",
        )
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Port"),
) -> None:
    """Run the Web API (AI operations and practice sessions)."""
    import uvicorn

    console.print(f"[blue]Mate AI API en http://{host}:{port}[/blue]")
    uvicorn.run("mateai.web.api:app", host=host, port=port)
