"""
report_kit.reporting — turn execution results into exportable artifacts.

Modules:
  assembler — ReportAssembler: preview payloads and download workbooks.
  workbook  — openpyxl rendering with reproducible bytes.
  export    — write_artifact(): persist an artifact under data/outputs/.
"""

from report_kit.reporting.assembler import Artifact, ReportAssembler, slugify
from report_kit.reporting.export import write_artifact

__all__ = ["Artifact", "ReportAssembler", "slugify", "write_artifact"]
