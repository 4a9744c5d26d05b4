"""
This package contains:
- loading of the per level/subject evaluation tables (CSV/XLSX)
- header structure detection and skill block segmentation
- extraction of per-school tier counts
- the socio-economic index (IPS) join and national references
- per-skill regressions, classification and school profiles
- the strategic readings and the Excel export
"""
from .ingest import load_source_tables
from .extract import extract_table
from .ips import IpsSource, enrich_schools
from .references import ReferenceBook
from .regression import fit_regressions
from .scoring import classify_all, subject_profiles
from .synthesis import build_strategy, summarize_schools
from .pipeline import PipelineError, PipelineResult, run_pipeline
from .export import export_to_excel_bytes, write_workbook

__all__ = [
    "load_source_tables",
    "extract_table",
    "IpsSource",
    "enrich_schools",
    "ReferenceBook",
    "fit_regressions",
    "classify_all",
    "subject_profiles",
    "build_strategy",
    "summarize_schools",
    "PipelineError",
    "PipelineResult",
    "run_pipeline",
    "export_to_excel_bytes",
    "write_workbook",
]
