"""HTML report generation for pipeline results."""
from pathlib import Path
from typing import Optional
import json

import pandas as pd


def _table_html(csv_path: Optional[str]) -> str:
    if not csv_path or not Path(csv_path).exists():
        return "<p>N/A</p>"
    return pd.read_csv(csv_path).to_html(index=False, float_format=lambda v: f"{v:.3f}", na_rep="NA")


def generate_html_report(results_path: Path, output_path: Path) -> Path:
    """Create HTML report from a run's summary.json."""
    with open(results_path) as f:
        results = json.load(f)

    selected = results.get("selected") or {}
    minimization = results.get("minimization") or {}
    artifacts = results.get("artifacts", {})
    status = results["status"]
    converged = minimization.get("status") == "Accepted"
    plot = artifacts.get("energy_plot")
    plot_html = f'<img src="{Path(plot).name}" alt="energy trajectory">' if plot else ""

    html_content = f"""<!DOCTYPE html>
<html>
<head>
    <title>pepdock report: {results['target']}</title>
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; }}
        .container {{ max-width: 1000px; margin: 0 auto; }}
        .section {{ margin-bottom: 2rem; }}
        .success {{ color: green; }}
        .failed {{ color: red; }}
        .warning {{ color: darkorange; }}
        table {{ border-collapse: collapse; font-size: 0.9rem; }}
        td, th {{ border: 1px solid #ccc; padding: 0.2rem 0.5rem; }}
        pre {{ background: #f4f4f4; padding: 1rem; overflow-x: auto; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>pepdock report: {results['target']}</h1>

        <div class="section">
            <h2>Status</h2>
            <p class="{'success' if status == 'success' else 'failed'}">
                {status.upper()}
            </p>
            <p>Completed at: {results['timestamp']}</p>
            <p>Execution time: {results.get('performance', {}).get('execution_time_sec', 'N/A')} seconds</p>
        </div>

        <div class="section">
            <h2>Selected pose</h2>
            <p>Pose: {selected.get('pose_path', 'N/A')}</p>
            <p>Affinity: {selected.get('affinity', 'N/A')} kcal/mol,
               contact fraction: {selected.get('contact_fraction', 'N/A')}</p>
            <p>Reference replicate: {selected.get('reference_replicate', 'N/A')}</p>
        </div>

        <div class="section">
            <h2>Minimization</h2>
            <p class="{'success' if converged else 'warning'}">{minimization.get('status', 'N/A')}</p>
            <p>Final pose: {minimization.get('final_pose', 'N/A')}</p>
            {_table_html(artifacts.get('stage_table'))}
            {plot_html}
        </div>

        <div class="section">
            <h2>Replicates</h2>
            {_table_html(artifacts.get('pose_table'))}
        </div>

        <div class="section">
            <h2>Preparation</h2>
            <pre>{json.dumps(results.get('preparation', {}), indent=2)}</pre>
        </div>

        <div class="section">
            <h2>Configuration</h2>
            <pre>{json.dumps(results.get('config', {}), indent=2)}</pre>
        </div>
    </div>
</body>
</html>
"""

    output_path.write_text(html_content)
    return output_path
