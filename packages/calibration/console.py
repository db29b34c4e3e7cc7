"""
Line-oriented operator console for the calibration session.

Baseline commands:  STATUS, DONE, RESTART
Point commands:     "X Y", START, STATUS, CLEAR
The session ends once START moves the engine to Running.
"""

from typing import Callable, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .engine import CalibrationCommandError, CalibrationEngine
from .state import CalibrationState


class OperatorConsole:
    """Parses operator lines and drives the CalibrationEngine."""

    def __init__(
        self,
        engine: CalibrationEngine,
        console: Optional[Console] = None,
        on_tracking_started: Optional[Callable[[], None]] = None,
        point_timeout_s: Optional[float] = None
    ):
        """
        Initialize the console.

        Args:
            engine: Calibration engine to drive
            console: Rich console for output (defaults to stdout)
            on_tracking_started: Called once after START succeeds
            point_timeout_s: Fallback wait per calibration point
        """
        self.engine = engine
        self.console = console or Console()
        self.on_tracking_started = on_tracking_started
        self.point_timeout_s = (
            point_timeout_s if point_timeout_s is not None
            else engine.config.calib_point_timeout_s
        )

    def print_baseline_help(self):
        self.console.print(Panel.fit(
            "[bold]Baseline collection[/bold]\n"
            "Remove the magnet. Each sensor averages "
            f"{self.engine.config.baseline_readings_required} readings.\n\n"
            "STATUS   show progress\n"
            "DONE     finish (needs 2+ sensors)\n"
            "RESTART  discard baselines",
            title="Calibration"
        ))

    def print_point_help(self):
        self.console.print(Panel.fit(
            "[bold]Calibration points[/bold]\n"
            "Place the magnet and type its position.\n\n"
            "X Y      record a point (0-1000)\n"
            "START    begin tracking\n"
            "STATUS   list recorded points\n"
            "CLEAR    remove all points",
            title="Calibration"
        ))

    def print_baseline_status(self):
        table = Table(title="Baseline Status")
        table.add_column("Node", justify="right")
        table.add_column("Readings", justify="right")
        table.add_column("Ambient (m-uT)")
        table.add_column("Valid")

        required = self.engine.config.baseline_readings_required
        for node_id, collected, valid, ambient in self.engine.baseline_status():
            table.add_row(
                str(node_id),
                f"{collected}/{required}",
                f"({ambient[0]}, {ambient[1]}, {ambient[2]})" if valid else "-",
                "[green]yes[/green]" if valid else "[yellow]no[/yellow]"
            )
        self.console.print(table)

    def print_points(self):
        points = self.engine.points()
        if not points:
            self.console.print("[dim]No calibration points recorded[/dim]")
            return

        table = Table(title=f"Calibration Points ({len(points)}/{self.engine.config.max_calib_points})")
        table.add_column("#", justify="right")
        table.add_column("Position")
        for node_id in self.engine.config.node_ids:
            table.add_column(f"Node {node_id}")

        for i, point in enumerate(points):
            cells = []
            for node_id in self.engine.config.node_ids:
                if point.is_valid_for(node_id):
                    f = point.node_field[node_id]
                    cells.append(f"({f[0]}, {f[1]}, {f[2]})")
                else:
                    cells.append("-")
            table.add_row(str(i), f"({point.x}, {point.y})", *cells)
        self.console.print(table)

    def handle_line(self, line: str) -> bool:
        """
        Execute one operator line.

        Returns:
            False once tracking has started and the console should exit
        """
        tokens = line.strip().split()
        if not tokens:
            return True

        state = self.engine.state
        command = tokens[0].upper()

        try:
            if state == CalibrationState.BASELINE:
                return self._handle_baseline(command)
            if state == CalibrationState.WAITING_INPUT:
                return self._handle_points(command, tokens)
            if state == CalibrationState.RUNNING:
                return False
            self.console.print("[red]Calibration has not started[/red]")
        except CalibrationCommandError as e:
            self.console.print(f"[red]{e}[/red]")
        return True

    def _handle_baseline(self, command: str) -> bool:
        if command == "STATUS":
            self.print_baseline_status()
        elif command == "DONE":
            self.engine.finish_baseline()
            self.console.print(
                f"[green]Baseline complete for {self.engine.valid_baseline_count()} sensors[/green]"
            )
            self.print_point_help()
        elif command == "RESTART":
            self.engine.restart_baseline()
            self.console.print("[yellow]Baselines cleared, collecting again[/yellow]")
        else:
            self.console.print(f"[red]Unknown command: {command}[/red]")
            self.print_baseline_help()
        return True

    def _handle_points(self, command: str, tokens: list) -> bool:
        if command == "START":
            self.engine.start_tracking()
            self.console.print("[bold green]Tracking started[/bold green]")
            if self.on_tracking_started is not None:
                self.on_tracking_started()
            return False
        if command == "STATUS":
            self.print_points()
        elif command == "CLEAR":
            self.engine.clear_points()
            self.console.print("[yellow]Calibration points cleared[/yellow]")
        elif len(tokens) == 2:
            try:
                x, y = int(tokens[0]), int(tokens[1])
            except ValueError:
                self.console.print(f"[red]Expected two integers, got: {' '.join(tokens)}[/red]")
                return True
            self._record_point(x, y)
        else:
            self.console.print(f"[red]Unknown command: {' '.join(tokens)}[/red]")
            self.print_point_help()
        return True

    def _record_point(self, x: int, y: int):
        index = self.engine.begin_point(x, y)
        with self.console.status(f"[bold green]Collecting point ({x}, {y})...[/bold green]"):
            pending = self.engine.wait_for_point(index, self.point_timeout_s)

        if pending:
            nodes = ", ".join(str(n) for n in sorted(pending))
            self.console.print(f"[yellow]Point {index} incomplete, no reading from node(s) {nodes}[/yellow]")
        else:
            self.console.print(f"[green]Point {index} recorded at ({x}, {y})[/green]")

    def run(self, lines: Optional[Iterable[str]] = None):
        """
        Run the session until tracking starts or input ends.

        Args:
            lines: Input lines; reads from the terminal when omitted
        """
        if self.engine.state == CalibrationState.IDLE:
            self.engine.start_calibration()
        self.print_baseline_help()

        if lines is not None:
            for line in lines:
                if not self.handle_line(line):
                    return
            return

        while True:
            try:
                line = self.console.input("> ")
            except EOFError:
                return
            if not self.handle_line(line):
                return
