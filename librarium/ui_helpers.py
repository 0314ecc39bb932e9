import json
import os
from typing import Any, Dict, List, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBRARIUM_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_rows(rows: List[Dict[str, Any]], columns: Sequence[str], title: str, empty_message: str) -> None:
    """Print a list of records in the current output mode.

    - plain: one line per record, columns joined by ' | '
    - json: JSON array of the selected columns
    - rich: Rich table
    """
    if not rows:
        print(empty_message)
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([{c: row.get(c) for c in columns} for row in rows], ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for column in columns:
            table.add_column(column.replace("_", " ").title())
        for row in rows:
            table.add_row(*[str(row.get(c, "")) for c in columns])
        _console.print(table)
    else:
        for row in rows:
            print(" | ".join(str(row.get(c, "")) for c in columns))


def print_record(record: Dict[str, Any], title: str) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(record, ensure_ascii=False, default=str))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k}:[/] {v}" for k, v in record.items())
        _console.print(Panel.fit(content, title=title, border_style="blue"))
    else:
        print(title)
        for key, value in record.items():
            print(f"{key}: {value}")
