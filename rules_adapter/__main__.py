#!/usr/bin/env python3
"""
Evaluate rules from the command line.

Usage:
    python -m rules_adapter --rules rules.yaml total
    python -m rules_adapter -r rules.yaml -s situation.json total "total . réduit"
    python -m rules_adapter -r rules.yaml --set prix=12 --set "couleur='rouge'" total --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from rules_adapter.adapter import RulesAdapter
from rules_adapter.engine import EngineError, RuleCatalog
from rules_adapter.engine.expressions import parse_number
from rules_adapter.evaluation import EvaluationBatchResult

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Setup logging with rich handler."""
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rules_adapter",
        description="Evaluate rules against a situation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m rules_adapter -r rules.yaml total
  python -m rules_adapter -r rules.yaml -s situation.json total "total . réduit"
  python -m rules_adapter -r rules.yaml --set prix=12 total --json
        """,
    )

    parser.add_argument(
        "rules_to_evaluate",
        nargs="*",
        metavar="RULE",
        help="Rules to evaluate (default: every rule of the catalog)",
    )
    parser.add_argument(
        "--rules", "-r",
        required=True,
        help="YAML file with the rule definitions",
    )
    parser.add_argument(
        "--situation", "-s",
        help="JSON file with the situation (rule name -> answer)",
    )
    parser.add_argument(
        "--set",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Answer overriding the situation file (repeatable)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging",
    )
    return parser


def parse_assignments(assignments: List[str]) -> Dict[str, Any]:
    """
    Parse NAME=VALUE pairs; numeric values become numbers.

    Raises:
        ValueError: If an item has no '='
    """
    result: Dict[str, Any] = {}
    for item in assignments:
        if "=" not in item:
            raise ValueError(f"expected NAME=VALUE, got {item!r}")
        name, value = item.split("=", 1)
        number = parse_number(value)
        result[name.strip()] = number if number is not None else value.strip()
    return result


def load_situation(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: situation must be a JSON object")
    return data


def format_value(value: Any) -> str:
    if value is None:
        return "[dim]∅[/dim]"
    if value is True:
        return "oui"
    if value is False:
        return "non"
    return str(value)


def render_table(batch: EvaluationBatchResult) -> Table:
    table = Table(title="Evaluated rules")
    table.add_column("Rule", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column("Applicable")
    table.add_column("Missing")

    for name, result in batch:
        table.add_row(
            name,
            format_value(result.node_value),
            "[green]yes[/green]" if result.is_applicable else "[red]no[/red]",
            ", ".join(result.missing_variables),
        )
    return table


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        catalog = RuleCatalog.from_yaml(Path(args.rules))
        situation = load_situation(args.situation)
        situation.update(parse_assignments(args.set))

        adapter = RulesAdapter(catalog)
        adapter.set_situation(situation)
        report = adapter.last_report

        targets = args.rules_to_evaluate or catalog.names()
        batch = adapter.evaluate_many(targets)
    except (OSError, ValueError, EngineError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    if args.json:
        print(json.dumps(
            {"situation": dict(adapter.get_situation()), "dropped": report.to_dict()["rejected"], "rules": batch.to_list()},
            ensure_ascii=False,
            indent=2,
        ))
        return 0

    for rejected in report.rejected:
        console.print(
            f"[yellow]Dropped[/yellow] {rejected.name}={rejected.value!r} ({rejected.reason.value})"
        )
    console.print(render_table(batch))
    return 0


if __name__ == "__main__":
    sys.exit(main())
