"""SVJoin: structural variant calling from read depth plus discordant/split-read evidence.

Public API is intentionally small; most users should use the CLI:

    svjoin call --bam sample.bam --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
