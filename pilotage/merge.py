from __future__ import annotations
import logging
from typing import Dict, Iterable, List
from .models import SchoolRecord

logger = logging.getLogger(__name__)


def merge_school_records(extractions: Iterable[List[SchoolRecord]]) -> List[SchoolRecord]:
    """
    Folds per-table extractions into one record per UAI, in first-seen order.
    Skill maps are unioned; a key seen twice keeps the later value.
    Schools left without any skill are dropped.
    """
    merged: Dict[str, SchoolRecord] = {}

    for records in extractions:
        for rec in records:
            uai = rec.uai.strip()
            current = merged.get(uai)
            if current is None:
                current = SchoolRecord(uai=uai, name=rec.name, results={})
                merged[uai] = current
            elif not current.name and rec.name:
                current.name = rec.name

            overlap = current.results.keys() & rec.results.keys()
            if overlap:
                logger.debug("%s: %d skill key(s) overwritten", uai, len(overlap))
            current.results.update(rec.results)

    schools = [s for s in merged.values() if s.results]
    logger.info("%d unique schools merged", len(schools))
    return schools
