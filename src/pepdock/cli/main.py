"""pepdock Command Line Interface.

This module serves as the main entry point for the pepdock command line tools.
"""
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .. import __version__
from ..config import load_config
from ..exceptions import PepdockError
from ..logging_config import configure_logging
from ..pipeline import run_targets
from ..prep.complex import assemble_complex, split_complex
from ..prep.records import read_records, write_records
from ..prep.target_prep import protonate_structures
from ..utils.toolchain import CancelToken

console = Console()


def _fail(exc: PepdockError) -> None:
    console.print(f"[red]{type(exc).__name__}: {escape(exc.message)}[/red]", soft_wrap=True)
    if exc.stage:
        console.print(f"  failed stage: {exc.stage}", soft_wrap=True)
    console.print(f"  last sealed artifact: {exc.last_sealed or 'none'}", soft_wrap=True)
    sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name="pepdock")
def cli():
    """pepdock: peptide docking replicates with staged minimization"""
    pass


@cli.command()
@click.argument("configs", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--run-root", type=click.Path(file_okay=False), help="Override run_root of every config")
@click.option("--workers", "-j", default=1, show_default=True, help="Targets to run in parallel")
@click.option("--resume", is_flag=True, help="Reuse sealed replicates and stages")
@click.option("--strict-ties", is_flag=True, help="Fail instead of preferring the earlier replicate on a tie")
@click.option("--log-dir", default="runlogs", show_default=True, type=click.Path(file_okay=False))
@click.option("--verbose", "-v", is_flag=True, help="Debug-level log file")
def run(configs, run_root, workers, resume, strict_ties, log_dir, verbose):
    """Run the docking pipeline for one or more target configs."""
    configure_logging(Path(log_dir), level=logging.DEBUG if verbose else logging.INFO)
    try:
        loaded = []
        for path in configs:
            config = load_config(path)
            search = replace(config.search,
                             resume=resume or config.search.resume,
                             strict_ties=strict_ties or config.search.strict_ties)
            config = replace(config, search=search)
            if run_root:
                config = config.with_run_root(Path(run_root))
            loaded.append(config)
    except PepdockError as exc:
        _fail(exc)

    cancel = CancelToken()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.cancel())
    try:
        with console.status(f"[bold green]Running {len(loaded)} target(s)...[/bold green]"):
            outcomes = run_targets(loaded, max_workers=workers, cancel=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)

    table = Table(title="pepdock results")
    for column in ("target", "status", "affinity", "contact fraction", "minimization", "final pose"):
        table.add_column(column)
    for outcome in outcomes:
        if outcome.ok:
            result = outcome.result
            table.add_row(outcome.target, "[green]ok[/green]",
                          f"{result.selected.affinity:.3f}",
                          str(result.selected.contact_fraction),
                          result.minimization.status.value,
                          str(result.final_pose))
        else:
            table.add_row(outcome.target, "[red]failed[/red]", "", "", "",
                          f"{outcome.error.stage}: {outcome.error.message}")
    console.print(table)

    failures = [outcome for outcome in outcomes if not outcome.ok]
    if len(failures) == 1 and len(outcomes) == 1:
        _fail(failures[0].error)
    if failures:
        console.print(f"[red]{len(failures)} of {len(outcomes)} targets failed[/red]")
        sys.exit(1)
    console.print("\n[green]All targets completed successfully![/green]")


@cli.command()
@click.argument("receptor", type=click.Path(exists=True, dir_okay=False))
@click.argument("peptide", type=click.Path(exists=True, dir_okay=False))
@click.option("--output-dir", "-o", default="protonated", show_default=True, type=click.Path(file_okay=False))
@click.option("--reduce", "reduce_exe", default="reduce", show_default=True, help="reduce executable")
@click.option("--flip/--no-flip", default=None, help="Let reduce flip Asn/Gln/His side chains")
@click.option("--strict", is_flag=True, help="Reject histidines with neither ring hydrogen")
def protonate(receptor, peptide, output_dir, reduce_exe, flip, strict):
    """Protonate a receptor/peptide pair together and label histidine tautomers."""
    try:
        receptor_out, peptide_out, receptor_calls, peptide_calls = protonate_structures(
            Path(receptor), Path(peptide), Path(output_dir),
            reduce_exe=reduce_exe, flip=flip, strict=strict,
        )
    except PepdockError as exc:
        _fail(exc)

    table = Table(title="Histidine calls")
    table.add_column("structure")
    table.add_column("residue", justify="right")
    table.add_column("call")
    for label, calls in (("receptor", receptor_calls), ("peptide", peptide_calls)):
        for (chain, resseq), call in sorted(calls.items()):
            table.add_row(label, f"{chain}{resseq}", call.value)
    console.print(table)
    console.print(f"[green]Wrote {receptor_out} and {peptide_out}[/green]")


@cli.command()
@click.argument("receptor", type=click.Path(exists=True, dir_okay=False))
@click.argument("peptide", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", default="complex.pdb", show_default=True, type=click.Path(dir_okay=False))
def merge(receptor, peptide, output):
    """Merge a receptor and a peptide into one complex file."""
    try:
        path = write_records(output, assemble_complex(read_records(receptor), read_records(peptide)))
    except PepdockError as exc:
        _fail(exc)
    console.print(f"[green]Wrote {path}[/green]")


@cli.command()
@click.argument("complex_pdb", type=click.Path(exists=True, dir_okay=False))
@click.option("--receptor", "-r", default="receptor.pdb", show_default=True, type=click.Path(dir_okay=False))
@click.option("--peptide", "-p", default="peptide.pdb", show_default=True, type=click.Path(dir_okay=False))
def split(complex_pdb, receptor, peptide):
    """Split a complex back into receptor and peptide files."""
    try:
        receptor_lines, peptide_lines = split_complex(read_records(complex_pdb))
    except PepdockError as exc:
        _fail(exc)
    write_records(receptor, receptor_lines + ["END"])
    write_records(peptide, peptide_lines + ["END"])
    console.print(f"[green]Wrote {receptor} ({len(receptor_lines)} lines) "
                  f"and {peptide} ({len(peptide_lines)} lines)[/green]")


if __name__ == "__main__":
    cli()
