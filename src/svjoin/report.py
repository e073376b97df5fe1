from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, Sequence

from jinja2 import Template

from .config import SvCallerConfig
from .models import SvAnalysisResult, SvCall

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>SVJoin Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 6px 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>SVJoin Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>BAM</th><td><code>{{ bam_path }}</code></td></tr>
      <tr><th>Sample</th><td><code>{{ sample }}</code></td></tr>
      <tr><th>Reference build</th><td>{{ result.reference_build }}</td></tr>
      <tr><th>Coverage</th><td>{{ "%.1f"|format(result.mean_coverage) }}x</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Evidence</h3>
    <table>
      <tr><th>Discordant pairs</th><td>{{ result.total_discordant_pairs }}</td></tr>
      <tr><th>Split reads</th><td>{{ result.total_split_reads }}</td></tr>
      <tr><th>Depth segments</th><td>{{ result.cnv_segments }}</td></tr>
      <tr><th>PASS calls</th><td>{{ calls|length }}</td></tr>
    </table>
  </div>
</div>

<h2>Settings</h2>
<table>
{% for key, value in settings.items() %}
  <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
{% endfor %}
</table>

<h2>PASS calls</h2>
{% if calls %}
<table>
  <tr><th>ID</th><th>Type</th><th>Locus</th><th>Length</th><th>QUAL</th><th>PE</th><th>SR</th><th>RD</th><th>Confidence</th><th>GT</th></tr>
  {% for c in calls %}
  <tr>
    <td>{{ c.id }}</td>
    <td>{{ c.sv_type.value }}</td>
    <td>{{ c.chrom }}:{{ c.start + 1 }}{% if c.mate_chrom %} &rarr; {{ c.mate_chrom }}:{{ c.mate_pos + 1 }}{% else %}-{{ c.end }}{% endif %}</td>
    <td>{{ c.sv_len }}</td>
    <td>{{ "%.1f"|format(c.quality) }}</td>
    <td>{{ c.paired_end_support }}</td>
    <td>{{ c.split_read_support }}</td>
    <td>{% if c.relative_depth is not none %}{{ "%.2f"|format(c.relative_depth) }}{% endif %}</td>
    <td>{{ "%.2f"|format(c.confidence()) }}</td>
    <td>{{ c.genotype }}</td>
  </tr>
  {% endfor %}
</table>
{% else %}
<p>No PASS calls.</p>
{% endif %}

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Calls by type</h3>
    <img src="{{ plots.type_counts }}" alt="type counts">
  </div>
  <div class="card">
    <h3>Size distribution</h3>
    <img src="{{ plots.size_hist }}" alt="size histogram">
  </div>
</div>
<div class="card" style="margin-top:16px;">
  <h3>Depth segments</h3>
  <img src="{{ plots.segments }}" alt="depth segments">
</div>

<h2>Outputs</h2>
<ul>
  <li><code>{{ vcf_path }}</code> (+ <code>.tbi</code>)</li>
  <li><code>depth_segments.tsv</code>, <code>evidence_summary.txt</code>, <code>sv_metadata.json</code></li>
</ul>

<hr>
<p class="small">SVJoin {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    bam_path: str,
    vcf_path: str,
    sample: str,
    result: SvAnalysisResult,
    config: SvCallerConfig,
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    calls: Sequence[SvCall] = result.sv_calls
    settings: Dict[str, Any] = config.to_dict()

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        bam_path=bam_path,
        vcf_path=vcf_path,
        sample=sample,
        result=result,
        calls=calls,
        settings=settings,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
