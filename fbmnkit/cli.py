"""Command-line interface for fbmnkit.

Provides three subcommands:

- ``run``: Preprocess a directory of raw LC-MS/MS files and write the GNPS FBMN files.
- ``inspect``: Summarize scan counts, RT range and TIC of every raw file.
- ``config``: Write the default settings to a JSON or YAML file.

Examples
--------
.. code-block:: bash

    fbmnkit config --output settings.yaml
    fbmnkit run --input-dir data/ --output-dir gnps/ --config settings.yaml
    fbmnkit inspect --input-dir data/ --output summary.csv
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

import pandas as pd
import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import WorkflowSettings
from .io.readers import find_raw_files, load_experiment, read_sample_metadata
from .processing.quality import summarize_experiment
from .processing.workflow import FBMNWorkflow

logger = logging.getLogger(__name__)
console = Console()

app = typer.Typer(
    name="fbmnkit",
    help="fbmnkit: LC-MS/MS preprocessing for GNPS feature-based molecular networking.",
    add_completion=False,
    rich_markup_mode="rich",
)


class Polarity(str, Enum):
    """Ionization mode."""

    positive = "positive"
    negative = "negative"


class ExportStyle(str, Enum):
    """GNPS quantification table flavour."""

    xcms = "xcms"
    mzmine = "mzmine"


def _raw_files_or_exit(input_dir: Path) -> list[Path]:
    try:
        files = find_raw_files(input_dir)
    except FileNotFoundError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)
    if not files:
        console.print(f"[red]Error:[/red] No mzML/mzXML files found in {input_dir}")
        raise typer.Exit(code=1)
    return files


@app.command()
def run(
    input_dir: Annotated[
        Path, typer.Option(help="Directory containing .mzML/.mzXML files.")
    ],
    output_dir: Annotated[
        Path, typer.Option(help="Directory for the GNPS FBMN files.")
    ],
    config: Annotated[
        Optional[Path], typer.Option(help="JSON/YAML settings file.")
    ] = None,
    metadata: Annotated[
        Optional[Path],
        typer.Option(help="Sample sheet with a 'filename' column."),
    ] = None,
    polarity: Annotated[
        Optional[Polarity], typer.Option(help="Ionization mode (overrides config).")
    ] = None,
    style: Annotated[
        Optional[ExportStyle], typer.Option(help="Export style (overrides config).")
    ] = None,
) -> None:
    """Preprocess raw files and export the GNPS FBMN input files."""
    try:
        settings = (
            WorkflowSettings.from_file(config) if config is not None
            else WorkflowSettings.default()
        )
    except (OSError, ValueError) as exc:
        console.print(f"[red]Error:[/red] Invalid settings file {config}: {exc}")
        raise typer.Exit(code=1)
    if polarity is not None:
        settings.annotation.polarity = polarity.value
    if style is not None:
        settings.export.style = style.value

    raw_files = _raw_files_or_exit(input_dir)

    sample_metadata = None
    if metadata is not None:
        try:
            sample_metadata = read_sample_metadata(metadata)
        except (OSError, ValueError) as exc:
            console.print(f"[red]Error:[/red] Invalid sample metadata: {exc}")
            raise typer.Exit(code=1)

    workflow = FBMNWorkflow(settings)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Starting...", total=None)
        try:
            result = workflow.run(
                raw_files,
                sample_metadata=sample_metadata,
                on_step=lambda d: progress.update(task, description=f"{d}..."),
            )
        except (RuntimeError, ValueError) as exc:
            logger.error("Workflow failed: %s", exc)
            console.print(f"[red]Error:[/red] Workflow failed: {exc}")
            raise typer.Exit(code=1)
        progress.update(task, description="Writing GNPS files...")
        written = workflow.export(result, output_dir)

    # Summary
    console.print()
    table = Table(title="FBMN Preprocessing Summary", show_lines=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for metric, value in result.summary().items():
        table.add_row(metric.capitalize(), str(value))
    table.add_row("Export style", settings.export.style)
    for name, path in written.items():
        table.add_row(f"{name.capitalize()} file", str(path))
    console.print(table)


@app.command()
def inspect(
    input_dir: Annotated[
        Path, typer.Option(help="Directory containing .mzML/.mzXML files.")
    ],
    output: Annotated[
        Path, typer.Option(help="Output CSV file for the per-file summary.")
    ],
) -> None:
    """Summarize scan counts, RT range and TIC of every raw file."""
    raw_files = _raw_files_or_exit(input_dir)

    rows: list[dict] = []
    n_failed = 0
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Inspecting files...", total=len(raw_files))
        for path in raw_files:
            progress.update(task, description=f"Inspecting {path.name}")
            try:
                summary = summarize_experiment(load_experiment(path))
                rows.append({"filename": path.name, **summary.to_dict()})
            except Exception as exc:
                n_failed += 1
                logger.warning("Failed to inspect %s: %s", path.name, exc)
            progress.advance(task)

    if not rows:
        console.print("[red]Error:[/red] No file could be read.")
        raise typer.Exit(code=1)

    report = pd.DataFrame(rows)
    report.to_csv(output, index=False)

    console.print()
    table = Table(title="Raw File Summary", show_lines=False)
    table.add_column("File", style="bold")
    table.add_column("MS1", justify="right")
    table.add_column("MS2", justify="right")
    table.add_column("RT range (s)", justify="right")
    for row in rows:
        table.add_row(
            row["filename"],
            str(row["n_ms1"]),
            str(row["n_ms2"]),
            f"{row['rt_min']:.1f}-{row['rt_max']:.1f}",
        )
    console.print(table)
    console.print(f"Failed: {n_failed}  Output: {output}")


@app.command()
def config(
    output: Annotated[
        Path, typer.Option(help="Output .json, .yaml or .yml settings file.")
    ],
) -> None:
    """Write the default settings to a JSON or YAML file."""
    settings = WorkflowSettings.default()
    if output.suffix in (".yaml", ".yml"):
        settings.to_yaml(output)
    elif output.suffix == ".json":
        settings.to_json(output)
    else:
        console.print(
            f"[red]Error:[/red] Unsupported settings format '{output.suffix}'. "
            "Use .json, .yaml or .yml."
        )
        raise typer.Exit(code=1)
    console.print(f"Default settings written to {output}")


def main() -> None:
    logging.basicConfig(
        level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s"
    )
    app()


if __name__ == "__main__":
    main()
