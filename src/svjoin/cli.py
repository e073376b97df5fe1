from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .caller import METADATA_NAME, VCF_NAME, SvCaller
from .config import DEFAULT_CONFIG, SvCallerConfig, load_config
from .evidence import collect_evidence, coverage_from_bins, estimate_library_stats
from .plotting import plot_segment_log2, plot_sv_size_hist, plot_sv_type_counts
from .report import render_report
from .toy_data import make_toy_data
from .utils import dataclass_to_jsonable, ensure_outdir, write_json
from .validation import bam_contig_lengths, check_bam_index, check_positive


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    sys.stderr.write(f"{err.__class__.__name__}: {err}\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _resolve_config(args: argparse.Namespace) -> SvCallerConfig:
    base = load_config(args.config) if args.config else DEFAULT_CONFIG
    return base.with_overrides(
        bin_size=args.bin_size,
        min_depth_z_score=args.min_depth_z,
        min_cnv_size=args.min_cnv_size,
        max_cluster_distance=args.max_cluster_distance,
        min_map_q=args.min_mapq,
        min_coverage=args.min_coverage,
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="svjoin",
        description=(
            "SVJoin: structural variant calling from a short-read BAM by joining read-depth "
            "segmentation with discordant-pair and split-read breakpoint clustering."
        ),
    )
    p.add_argument("--version", action="version", version=f"svjoin {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a small paired-end BAM with planted SVs for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # call
    # -----------------
    c = sub.add_parser(
        "call",
        help="Call DEL/DUP/INV/BND structural variants from a BAM and write a VCF.",
    )
    c.add_argument("--bam", required=True, type=_path_exists, help="Input BAM (coordinate-sorted, indexed).")
    c.add_argument("--outdir", required=True, help="Output directory.")
    c.add_argument("--config", type=_path_exists, default=None, help="JSON file with caller settings.")
    c.add_argument("--reference-build", default="GRCh38", help="Reference build label for the VCF header.")
    c.add_argument("--sample", default=None, help="Sample name (default: first read group SM).")
    c.add_argument(
        "--contigs",
        nargs="+",
        default=None,
        help="Restrict depth analysis to these contigs (default: all BAM contigs).",
    )

    # Library model
    c.add_argument(
        "--mean-coverage",
        type=float,
        default=None,
        help="Sample coverage. If omitted, estimated from the median depth bin.",
    )
    c.add_argument("--read-length", type=float, default=None, help="Mean read length (estimated if omitted).")
    c.add_argument("--insert-size", type=float, default=None, help="Mean insert size (estimated if omitted).")
    c.add_argument("--insert-sd", type=float, default=None, help="Insert size SD (estimated if omitted).")

    # Setting overrides
    c.add_argument("--bin-size", type=int, default=None, help="Depth bin width in bp.")
    c.add_argument("--min-depth-z", type=float, default=None, help="|z| needed to open a depth segment.")
    c.add_argument("--min-cnv-size", type=int, default=None, help="Minimum depth segment length in bp.")
    c.add_argument(
        "--max-cluster-distance", type=int, default=None, help="Span of one breakpoint cluster in bp."
    )
    c.add_argument("--min-mapq", type=int, default=None, help="Minimum MAPQ for PE/SR evidence.")
    c.add_argument("--min-coverage", type=float, default=None, help="Refuse runs below this coverage.")

    # Outputs
    c.add_argument("--no-report", action="store_true", help="Skip plots and report.html.")
    c.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    c.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv).")

    return p


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_call(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "call.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("svjoin")
    logger.info("svjoin %s", __version__)

    try:
        check_bam_index(args.bam)
        for name in ("mean_coverage", "read_length", "insert_size"):
            check_positive(f"--{name.replace('_', '-')}", getattr(args, name))
        config = _resolve_config(args)
        contig_lengths = bam_contig_lengths(args.bam, contigs=args.contigs)

        vcf_path = outdir / VCF_NAME
        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Contigs: {len(contig_lengths)}")
            print("Settings:")
            for key, value in config.to_dict().items():
                print(f"  {key} = {value}")
            print("Planned outputs:")
            print(f"  {VCF_NAME} -> {vcf_path}")
            print(f"  depth_segments.tsv -> {outdir / 'depth_segments.tsv'}")
            print(f"  {METADATA_NAME} -> {outdir / METADATA_NAME}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        outdir = ensure_outdir(outdir)

        if args.resume and (outdir / METADATA_NAME).exists() and vcf_path.exists():
            logger.info("Resume enabled: %s already exists in %s", METADATA_NAME, outdir)
            print(str(outdir / "report.html") if (outdir / "report.html").exists() else str(vcf_path))
            return 0

        read_length = args.read_length
        insert_size = args.insert_size
        insert_sd = args.insert_sd
        library = None
        if read_length is None or insert_size is None or insert_sd is None:
            library = estimate_library_stats(args.bam)
            read_length = library.mean_read_length if read_length is None else read_length
            insert_size = library.mean_insert_size if insert_size is None else insert_size
            insert_sd = library.insert_size_sd if insert_sd is None else insert_sd

        evidence = collect_evidence(
            args.bam,
            config=config,
            expected_insert_size=float(insert_size),
            insert_size_sd=float(insert_sd),
            contig_lengths=contig_lengths,
            sample_name=args.sample,
            progress=True,
        )

        mean_coverage = args.mean_coverage
        if mean_coverage is None:
            mean_coverage = coverage_from_bins(evidence.depth_bins, config.bin_size, float(read_length))
            logger.info("Estimated coverage from depth bins: %.2fx", mean_coverage)

        write_json(
            outdir / "run_config.json",
            {
                "version": __version__,
                "bam_path": str(args.bam),
                "reference_build": args.reference_build,
                "config": config.to_dict(),
                "library": dataclass_to_jsonable(library) if library is not None else None,
                "read_length": float(read_length),
                "insert_size": float(insert_size),
                "insert_sd": float(insert_sd),
                "mean_coverage": float(mean_coverage),
            },
        )

        result = SvCaller(config).call_structural_variants(
            evidence,
            contig_lengths,
            args.reference_build,
            float(mean_coverage),
            read_length=float(read_length),
            outdir=outdir,
        )
        logger.info("PASS calls: %d", len(result.sv_calls))

        if args.no_report:
            print(str(vcf_path))
            return 0

        plots_dir = Path(outdir) / "plots"
        plots_dir.mkdir(parents=True, exist_ok=True)

        type_counts_png = plots_dir / "sv_type_counts.png"
        size_hist_png = plots_dir / "sv_size_hist.png"
        segments_png = plots_dir / "depth_segments.png"

        plot_sv_type_counts(calls=result.sv_calls, out_png=type_counts_png)
        plot_sv_size_hist(calls=result.sv_calls, out_png=size_hist_png)
        plot_segment_log2(segments=result.depth_segments, out_png=segments_png)

        plots_rel = {
            "type_counts": str(Path("plots") / type_counts_png.name),
            "size_hist": str(Path("plots") / size_hist_png.name),
            "segments": str(Path("plots") / segments_png.name),
        }

        report_path = render_report(
            outdir=outdir,
            version=__version__,
            bam_path=str(args.bam),
            vcf_path=str(vcf_path),
            sample=evidence.sample_name,
            result=result,
            config=config,
            plots=plots_rel,
        )

        logger.info("Report written: %s", report_path)
        print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "call":
        return cmd_call(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
