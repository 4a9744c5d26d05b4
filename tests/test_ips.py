import json
import os
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from pilotage.ips import IpsSource, enrich_schools, normalize_record
from pilotage.models import EffectiveCounts, SchoolRecord

API_ROWS = [
    {"uai": "0070001A", "ips": 95.3, "secteur": "public", "academie": "GRENOBLE", "departement": "07",
     "nom_de_la_commune": "Privas", "nom_etablissement": "École A", "rentree_scolaire": "2024-2025"},
    {"uai": "0070002B", "ips": "108,2", "secteur": "privé sous contrat", "academie": "GRENOBLE", "departement": "07",
     "nom_de_la_commune": "Aubenas"},
]


def _session(payload):
    session = MagicMock()
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    session.get.return_value = response
    return session


class TestNormalizeRecord:
    """API rows -> flat IPS records."""

    def test_fields(self):
        rec = normalize_record(API_ROWS[1])
        assert rec["ips"] == pytest.approx(108.2)
        assert rec["nom_commune"] == "Aubenas"
        assert rec["nom_etablissement"] is None

    def test_unparseable_index(self):
        assert normalize_record({"uai": " 0070001A ", "ips": "NC"}) == {
            "uai": "0070001A", "ips": None, "secteur": "", "academie": "", "departement": "",
            "nom_commune": "", "nom_etablissement": None,
        }


class TestIpsSource:
    """Download, disk cache and local files."""

    def test_download_and_cache(self, tmp_path):
        session = _session(API_ROWS)
        source = IpsSource(cache_path=tmp_path, session=session)
        records = source.load_departement("07")
        assert [r["uai"] for r in records] == ["0070001A", "0070002B"]
        assert source.get("0070001A")["ips"] == pytest.approx(95.3)

        params = session.get.call_args.kwargs["params"]
        assert ("refine", 'code_du_departement:"07"') in params
        assert ("refine", 'rentree_scolaire:"2024-2025"') in params

        cache = source.cache_file("07")
        assert cache.name == "ips_dept_07_2024_2025.json"
        assert json.loads(cache.read_text(encoding="utf-8"))[0]["uai"] == "0070001A"

        again = IpsSource(cache_path=tmp_path, session=session)
        again.load_departement("07")
        assert session.get.call_count == 1
        assert again.get("0070002B") is not None

    def test_force_refresh_and_stale_cache(self, tmp_path):
        session = _session(API_ROWS)
        source = IpsSource(cache_path=tmp_path, session=session)
        source.load_departement("07")
        source.load_departement("07", force_refresh=True)
        assert session.get.call_count == 2

        old = time.time() - 31 * 86400
        os.utime(source.cache_file("07"), (old, old))
        assert not source.cache_is_valid(source.cache_file("07"))

    def test_failed_download(self, tmp_path):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("offline")
        source = IpsSource(cache_path=tmp_path, session=session)
        assert source.load_departement("07") == []
        assert not source.cache_file("07").exists()
        assert source.records == {}

    def test_unexpected_payload(self, tmp_path):
        source = IpsSource(cache_path=tmp_path, session=_session({"error": "quota"}))
        assert source.download("07") == []

    def test_default_session_patched(self, tmp_path):
        with patch("pilotage.ips.requests.Session") as session_cls:
            session_cls.return_value = _session(API_ROWS[:1])
            source = IpsSource(cache_path=tmp_path)
            assert len(source.download("07")) == 1

    def test_load_csv_file(self, tmp_path):
        path = tmp_path / "ips.csv"
        path.write_text("uai;ips;secteur\n0070001A;95,3;public\n0070002B;;public\n", encoding="utf-8")
        source = IpsSource(cache_path=tmp_path, session=MagicMock())
        records = source.load_file(path)
        assert len(records) == 2
        assert source.get("0070001A")["ips"] == pytest.approx(95.3)
        assert source.get("0070002B")["ips"] is None

    def test_load_json_file(self, tmp_path):
        path = tmp_path / "ips.json"
        path.write_text(json.dumps(API_ROWS), encoding="utf-8")
        source = IpsSource(cache_path=tmp_path, session=MagicMock())
        source.load_file(path)
        assert set(source.records) == {"0070001A", "0070002B"}


class TestEnrichSchools:
    """IPS join restricted to public schools with an index."""

    def test_filters_and_issues(self):
        counts = {"CP_maths_x": EffectiveCounts.from_rate(50.0)}
        records = [
            SchoolRecord("0070001A", "École A", counts),
            SchoolRecord("0070002B", "École B", counts),
            SchoolRecord("0070003C", "École C", counts),
        ]
        index = {r["uai"]: r for r in map(normalize_record, API_ROWS)}
        enriched, issues = enrich_schools(records, index)
        assert [s.uai for s in enriched] == ["0070001A"]
        assert enriched[0].socio_index == pytest.approx(95.3)
        assert enriched[0].commune == "Privas"
        assert sorted(i["code"] for i in issues) == ["ips_missing", "sector_excluded"]
