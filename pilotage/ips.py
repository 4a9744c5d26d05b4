"""
Socio-economic index (IPS) of schools.

Records come from the data.education.gouv.fr explore API for one département
and one school year, cached on disk as JSON for 30 days, or from a local
CSV/JSON file.
"""
from __future__ import annotations
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import pandas as pd
import requests
from .models import EnrichedSchool, SchoolRecord
from .quality import make_issue
from .utils import cache_dir, load_json, save_json, load_rules

logger = logging.getLogger(__name__)

RULES = load_rules().get("ips", {})

BASE_URL = RULES.get(
    "base_url",
    "https://data.education.gouv.fr/api/explore/v2.1/catalog/datasets/fr-en-ips-ecoles-ap2022/exports/json",
)
SCHOOL_YEAR = RULES.get("school_year", "2024-2025")
CACHE_MAX_AGE_DAYS = float(RULES.get("cache_max_age_days", 30))
TIMEOUT = float(RULES.get("timeout", 60))


def _as_float(x: Any) -> Optional[float]:
    if x is None:
        return None
    try:
        v = float(str(x).replace(",", ".").strip())
    except ValueError:
        return None
    return v if v == v else None


def normalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "uai": str(record.get("uai", "") or "").strip(),
        "ips": _as_float(record.get("ips")),
        "secteur": str(record.get("secteur", "") or ""),
        "academie": str(record.get("academie", "") or ""),
        "departement": str(record.get("departement", "") or ""),
        "nom_commune": str(record.get("nom_de_la_commune", record.get("nom_commune", "")) or ""),
        "nom_etablissement": record.get("nom_etablissement") or None,
    }


class IpsSource:
    """Fetches, caches and serves IPS records keyed by UAI."""

    def __init__(self, cache_path: Optional[Path] = None, school_year: str = SCHOOL_YEAR, session: Optional[requests.Session] = None):
        self.cache_path = Path(cache_path) if cache_path else cache_dir()
        self.school_year = school_year
        self.session = session or requests.Session()
        self.records: Dict[str, Dict[str, Any]] = {}

    def cache_file(self, departement: str) -> Path:
        return self.cache_path / f"ips_dept_{departement}_{self.school_year.replace('-', '_')}.json"

    def cache_is_valid(self, path: Path) -> bool:
        if not path.exists():
            return False
        age_days = (time.time() - path.stat().st_mtime) / 86400.0
        return age_days < CACHE_MAX_AGE_DAYS

    def download(self, departement: str) -> List[Dict[str, Any]]:
        params = [
            ("refine", f'rentree_scolaire:"{self.school_year}"'),
            ("refine", f'code_du_departement:"{departement}"'),
        ]
        logger.info("Downloading IPS for département %s (%s)", departement, self.school_year)
        try:
            resp = self.session.get(BASE_URL, params=params, timeout=TIMEOUT)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("IPS download failed: %s", e)
            return []

        if not isinstance(data, list):
            logger.error("IPS download: unexpected payload (%s)", type(data).__name__)
            return []
        records = [normalize_record(r) for r in data if isinstance(r, dict)]
        logger.info("%d IPS records downloaded", len(records))
        return records

    def load_departement(self, departement: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        path = self.cache_file(departement)
        if not force_refresh and self.cache_is_valid(path):
            cached = load_json(path, [])
            if cached:
                logger.info("IPS loaded from cache %s (%d records)", path.name, len(cached))
                self._index(cached)
                return cached

        downloaded = self.download(departement)
        if downloaded:
            save_json(path, downloaded)
            self._index(downloaded)
        return downloaded

    def load_file(self, path: Path) -> List[Dict[str, Any]]:
        path = Path(path)
        if path.suffix.lower() == ".json":
            raw = load_json(path, [])
        else:
            df = pd.read_csv(path, sep=None, engine="python", dtype=str, keep_default_na=False, encoding="utf-8-sig")
            raw = df.to_dict(orient="records")
        records = [normalize_record(r) for r in raw if isinstance(r, dict)]
        logger.info("%d IPS records loaded from %s", len(records), path.name)
        self._index(records)
        return records

    def _index(self, records: List[Dict[str, Any]]) -> None:
        self.records = {r["uai"]: r for r in records if r.get("uai")}

    def get(self, uai: str) -> Optional[Dict[str, Any]]:
        return self.records.get(uai.strip())


def enrich_schools(
    schools: List[SchoolRecord],
    index: Dict[str, Dict[str, Any]],
) -> Tuple[List[EnrichedSchool], List[Dict[str, Any]]]:
    """
    Joins school records with their IPS record. Only public schools with a
    numeric index are returned; the others produce issue rows.
    """
    enriched: List[EnrichedSchool] = []
    issues: List[Dict[str, Any]] = []

    for s in schools:
        rec = index.get(s.uai.strip())
        ips = rec.get("ips") if rec else None
        school = EnrichedSchool(
            uai=s.uai,
            name=s.name,
            results=dict(s.results),
            socio_index=ips,
            sector=(rec or {}).get("secteur", ""),
            academie=(rec or {}).get("academie", ""),
            departement=(rec or {}).get("departement", ""),
            commune=(rec or {}).get("nom_commune", ""),
        )
        if not school.has_socio_index:
            issues.append(make_issue("ips_missing", s.uai, s.name))
            continue
        if not school.is_public:
            issues.append(make_issue("sector_excluded", s.uai, school.sector))
            continue
        enriched.append(school)

    logger.info("%d public schools with IPS (of %d)", len(enriched), len(schools))
    return enriched, issues
