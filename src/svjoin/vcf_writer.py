"""VCF output for structural variant calls.

Calls are written as a bgzip-compressed VCF with a tabix index. SV fields
follow the VCF 4.2 conventions: SVTYPE/SVLEN/END, CIPOS/CIEND, symbolic ALT
alleles for DEL/DUP/INV/INS and breakend notation for BND. The header carries
no date or run-specific metadata, so identical calls give identical bytes.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pysam

from .config import DEFAULT_CONFIG, SvCallerConfig
from .models import GT_HOM_ALT, SvCall, SvType

logger = logging.getLogger(__name__)

_SOURCE = "svjoin"

_SYMBOLIC_ALTS: Tuple[Tuple[str, str], ...] = (
    ("DEL", "Deletion"),
    ("DUP", "Duplication"),
    ("INV", "Inversion"),
    ("INS", "Insertion"),
)

# (id, number, type, description)
_INFO_FIELDS: Tuple[Tuple[str, int, str, str], ...] = (
    ("SVTYPE", 1, "String", "Type of structural variant"),
    ("SVLEN", 1, "Integer", "Difference in length between REF and ALT alleles"),
    ("END", 1, "Integer", "End position of the variant"),
    ("CIPOS", 2, "Integer", "Confidence interval around POS"),
    ("CIEND", 2, "Integer", "Confidence interval around END"),
    ("PE", 1, "Integer", "Number of paired-end reads supporting the variant"),
    ("SR", 1, "Integer", "Number of split reads supporting the variant"),
    ("RD", 1, "Float", "Relative read depth (observed/expected)"),
    ("MATEID", 1, "String", "ID of mate breakend for translocations"),
)

_FILTERS: Tuple[Tuple[str, str], ...] = (
    ("LowQual", "Quality score below threshold"),
    ("LowSupport", "Insufficient read support"),
)


class VcfWriteError(RuntimeError):
    """Raised when the SV VCF or its index cannot be written."""

    def __init__(self, message: str, *, path: str | Path) -> None:
        super().__init__(message)
        self.path = str(path)


def normalize_vcf_path(path: str | Path) -> Path:
    """Return ``path`` with a ``.gz`` suffix (bgzip output)."""
    p = Path(path)
    if p.name.endswith(".gz"):
        return p
    return p.with_name(p.name + ".gz")


def _contig_order(
    calls: Sequence[SvCall],
    contig_lengths: Optional[Mapping[str, int]],
) -> List[Tuple[str, Optional[int]]]:
    lengths: Dict[str, int] = dict(contig_lengths or {})
    order: List[Tuple[str, Optional[int]]] = [(c, int(lengths[c])) for c in lengths]
    seen = set(lengths)
    used = set()
    for call in calls:
        used.add(call.chrom)
        if call.mate_chrom:
            used.add(call.mate_chrom)
    for name in sorted(used - seen):
        order.append((name, None))
    return order


def _alt_allele(call: SvCall) -> str:
    if call.sv_type == SvType.BND:
        mate_chrom = call.mate_chrom or call.chrom
        mate_pos = call.mate_pos if call.mate_pos is not None else call.end
        return f"N]{mate_chrom}:{mate_pos + 1}]"
    return f"<{call.sv_type.value}>"


def _record_start(call: SvCall) -> int:
    """0-based start of the VCF record.

    Symbolic alleles are anchored on the padding base before the event, so
    END - POS == |SVLEN|. Breakends sit on their own base.
    """
    if call.sv_type == SvType.BND:
        return call.start
    return max(call.start - 1, 0)


def genotype_quality(quality: float) -> int:
    """Quality rounded half up."""
    return int(math.floor(quality + 0.5))


def _genotype(call: SvCall) -> Tuple[int, int]:
    if call.genotype == GT_HOM_ALT:
        return (1, 1)
    return (0, 1)


class SvVcfWriter:
    """Serializes SV calls into a bgzip-compressed, tabix-indexed VCF."""

    def __init__(self, config: SvCallerConfig = DEFAULT_CONFIG) -> None:
        self.config = config

    def build_header(
        self,
        sample_name: str,
        reference_build: str,
        contigs: Iterable[Tuple[str, Optional[int]]],
    ) -> pysam.VariantHeader:
        header = pysam.VariantHeader()
        header.add_meta("fileformat", "VCFv4.2")
        header.add_meta("source", _SOURCE)
        header.add_meta("reference", reference_build)
        for name, length in contigs:
            if length is None:
                header.contigs.add(name)
            else:
                header.contigs.add(name, length=length)
        for alt_id, description in _SYMBOLIC_ALTS:
            header.add_line(f'##ALT=<ID={alt_id},Description="{description}">')
        for info_id, number, vtype, description in _INFO_FIELDS:
            header.info.add(info_id, number=number, type=vtype, description=description)
        header.formats.add("GT", number=1, type="String", description="Genotype")
        header.formats.add("GQ", number=1, type="Integer", description="Genotype Quality")
        for filter_id, description in _FILTERS:
            header.filters.add(filter_id, None, None, description)
        header.add_sample(sample_name)
        return header

    def write(
        self,
        calls: Sequence[SvCall],
        output_path: str | Path,
        sample_name: str,
        reference_build: str,
        contig_lengths: Optional[Mapping[str, int]] = None,
    ) -> Path:
        """Write calls sorted by (chrom, POS) to ``output_path`` (+ ``.tbi``).

        Parameters
        ----------
        calls:
            SV calls in any order.
        output_path:
            Destination ``.vcf.gz``; a ``.gz`` suffix is appended when missing.
        sample_name:
            Sample column name.
        reference_build:
            Reference build written to the ``##reference`` header line.
        contig_lengths:
            Optional contig lengths for ``##contig`` lines, in header order.

        Returns
        -------
        Path of the compressed VCF.

        Raises
        ------
        VcfWriteError
            If any part of the output cannot be written. Partial outputs are removed.
        """
        out = normalize_vcf_path(output_path)
        index_path = Path(str(out) + ".tbi")
        tmp_vcf = out.with_name(out.name + ".tmp.vcf")

        ordered = sorted(calls, key=lambda c: (c.chrom, _record_start(c), c.start))
        header = self.build_header(sample_name, reference_build, _contig_order(ordered, contig_lengths))

        try:
            with pysam.VariantFile(str(tmp_vcf), "w", header=header) as vcf:
                for call in ordered:
                    vcf.write(self._record(vcf, call))
            pysam.tabix_compress(str(tmp_vcf), str(out), force=True)
            pysam.tabix_index(str(out), preset="vcf", force=True)
        except Exception as e:
            _remove_quietly(out, index_path)
            raise VcfWriteError(f"Failed to write SV VCF {out}: {e}", path=out) from e
        finally:
            _remove_quietly(tmp_vcf)

        logger.info("Wrote %d SV records to %s", len(ordered), out)
        return out

    def _record(self, vcf: pysam.VariantFile, call: SvCall) -> pysam.VariantRecord:
        start = _record_start(call)
        if call.sv_type == SvType.BND:
            stop = start + 1
        else:
            stop = max(call.end, start + 1)

        rec = vcf.new_record(
            contig=call.chrom,
            start=start,
            stop=stop,
            alleles=("N", _alt_allele(call)),
            id=call.id,
            qual=round(float(call.quality), 2),
            filter=call.filter,
        )
        rec.info["SVTYPE"] = call.sv_type.value
        rec.info["SVLEN"] = int(call.sv_len)
        rec.info["CIPOS"] = (int(call.ci_pos[0]), int(call.ci_pos[1]))
        rec.info["CIEND"] = (int(call.ci_end[0]), int(call.ci_end[1]))
        if call.paired_end_support > 0:
            rec.info["PE"] = int(call.paired_end_support)
        if call.split_read_support > 0:
            rec.info["SR"] = int(call.split_read_support)
        if call.relative_depth is not None:
            rec.info["RD"] = float(call.relative_depth)

        rec.samples[0]["GT"] = _genotype(call)
        rec.samples[0]["GQ"] = genotype_quality(call.quality)
        return rec


def _remove_quietly(*paths: Path) -> None:
    for p in paths:
        try:
            p.unlink()
        except FileNotFoundError:
            pass
