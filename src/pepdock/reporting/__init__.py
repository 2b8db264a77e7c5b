"""Run reports: CSV tables, energy plot, summary JSON and HTML."""
from .html_report import generate_html_report
from .summary import write_run_report
from .tables import plot_energy_trajectory, replicate_table, stage_table

__all__ = [
    "generate_html_report",
    "plot_energy_trajectory",
    "replicate_table",
    "stage_table",
    "write_run_report",
]
