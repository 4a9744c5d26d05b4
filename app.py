from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from pilotage.ingest import load_source_tables
from pilotage.ips import IpsSource
from pilotage.references import ReferenceBook
from pilotage.pipeline import PipelineError, PipelineResult, run_pipeline
from pilotage.export import write_workbook
from pilotage.utils import BASE_DIR, DEFAULT_DATA_DIR, load_json, cache_dir

logger = logging.getLogger("pilotage")

DEFAULT_CONFIG: Dict[str, Any] = {
    "departement": "07",
    "academie": "GRENOBLE",
    "circonscription": "",
    "data": str(DEFAULT_DATA_DIR),
    "output": str(BASE_DIR / "exports"),
    "cache_dir": "",
    "ips_file": "",
    "force_refresh": False,
}
# =========================

# Config
# =========================
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ips-pilotage",
        description="Analyse des évaluations nationales par école, corrigée de l'IPS, et stratégie IEN.",
    )
    p.add_argument("--config", type=Path, help="Fichier JSON de configuration (les options CLI priment)")
    p.add_argument("--departement", help="Code département (ex: 07)")
    p.add_argument("--academie", help="Académie pour les références (ex: GRENOBLE)")
    p.add_argument("--circonscription", help="Nom de la circonscription (affichage)")
    p.add_argument("--data", help="Dossier de données (orace/csv, references_nationales)")
    p.add_argument("--output", help="Dossier de sortie du classeur Excel")
    p.add_argument("--cache-dir", dest="cache_dir", help="Dossier du cache IPS")
    p.add_argument("--ips-file", dest="ips_file", help="Fichier IPS local (CSV/JSON) au lieu du téléchargement")
    p.add_argument("--force-refresh", dest="force_refresh", action="store_true", default=None, help="Ignorer le cache IPS")
    p.add_argument("--no-references", action="store_true", help="Ne pas charger les références nationales")
    p.add_argument("-v", "--verbose", action="store_true", help="Logs DEBUG")
    return p


def resolve_config(args: argparse.Namespace) -> Dict[str, Any]:
    config = dict(DEFAULT_CONFIG)
    if args.config:
        from_file = load_json(args.config, None)
        if not isinstance(from_file, dict):
            raise SystemExit(f"Configuration illisible: {args.config}")
        config.update({k: v for k, v in from_file.items() if k in DEFAULT_CONFIG})
    for key in DEFAULT_CONFIG:
        v = getattr(args, key, None)
        if v is not None:
            config[key] = v
    config["departement"] = str(config["departement"]).strip().zfill(2)
    return config
# =========================

# Run
# =========================
def load_ips_index(config: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    source = IpsSource(cache_path=Path(config["cache_dir"]) if config["cache_dir"] else cache_dir())
    if config["ips_file"]:
        source.load_file(Path(config["ips_file"]))
    else:
        source.load_departement(config["departement"], force_refresh=bool(config["force_refresh"]))
    return source.records


def log_summary(result: PipelineResult, config: Dict[str, Any]) -> None:
    d = result.strategy["dashboard"]
    ov = result.strategy["overview"]
    title = config["circonscription"] or f"département {config['departement']}"
    logger.info("Synthèse %s: %d écoles, %d analyses, %d régressions",
                title, d["schools_total"], len(result.classifications), len(result.regressions))
    logger.info("P0: %d  P1: %d  écoles leviers: %d  portefeuille leviers: %d",
                d["schools_p0"], d["schools_p1"], d["lever_schools"], len(result.strategy["portfolio"]))
    logger.info("Recommandation: %s", ov["recommendation"])
    errors = sum(1 for i in result.issues if i.get("level") == "error")
    if result.issues:
        logger.info("Qualité: %d signalements (%d erreurs)", len(result.issues), errors)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    config = resolve_config(args)
    data_dir = Path(config["data"])

    tables, issues = load_source_tables(data_dir)
    ips_index = load_ips_index(config)
    references = None
    if not args.no_references:
        references = ReferenceBook.load(data_dir, config["academie"], issues)

    try:
        result = run_pipeline(tables, ips_index, references, issues)
    except PipelineError as e:
        logger.error("Analyse impossible [%s]: %s", e.code, e)
        return 1

    log_summary(result, config)
    path = write_workbook(result, Path(config["output"]), academie=config["academie"], departement=config["departement"])
    print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
