from __future__ import annotations

import os
from pathlib import Path

import pandas as pd
import pytest

from propscrape.scraper import config, db
from propscrape.scraper.export_excel import (
    export_catalogue_to_excel,
    latest_export_path,
    prune_old_exports,
)
from propscrape.scraper.sync import reconcile
from tests.test_api import _configure_temp_paths, _sample_record


@pytest.fixture()
def temp_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    db.initialize_schema()


@pytest.mark.usefixtures("temp_db")
def test_export_writes_all_sheets(tmp_path: Path) -> None:
    reconcile(_sample_record("Parc Clementi"))
    reconcile(_sample_record("Lentor Hills"))
    db.record_session_summary(
        "s1",
        status="completed",
        started_at="2026-03-01T09:00:00Z",
        ended_at="2026-03-01T10:00:00Z",
        counts={"processed": 2, "new": 2},
    )
    dest = tmp_path / "catalogue.xlsx"

    path = export_catalogue_to_excel(str(dest))

    assert path == str(dest)
    sheets = pd.read_excel(dest, sheet_name=None, engine="openpyxl")
    assert set(sheets) == {
        "Properties",
        "Unit_Rows",
        "Images",
        "Sessions",
        "Summary_Status",
        "Summary_Type",
    }
    assert list(sheets["Properties"]["name"]) == ["Lentor Hills", "Parc Clementi"]
    assert set(sheets["Unit_Rows"]["property_name"]) == {"Lentor Hills", "Parc Clementi"}
    assert list(sheets["Sessions"]["id"]) == ["s1"]
    assert int(sheets["Summary_Status"]["count"].sum()) == 2


@pytest.mark.usefixtures("temp_db")
def test_empty_catalogue_exports_info_row(tmp_path: Path) -> None:
    dest = tmp_path / "empty.xlsx"

    export_catalogue_to_excel(str(dest))

    sheets = pd.read_excel(dest, sheet_name=None, engine="openpyxl")
    assert "Summary_Type" not in sheets
    assert list(sheets["Summary_Status"]["info"]) == ["No properties scraped yet"]


@pytest.mark.usefixtures("temp_db")
def test_managed_export_lands_in_exports_dir() -> None:
    reconcile(_sample_record())

    path = Path(export_catalogue_to_excel())

    assert path.parent == Path(config.EXPORTS_DIR)
    assert path.name.startswith("properties_")
    assert latest_export_path() == path


@pytest.mark.usefixtures("temp_db")
def test_prune_keeps_newest_exports() -> None:
    exports_dir = Path(config.EXPORTS_DIR)
    exports_dir.mkdir(parents=True, exist_ok=True)
    names = [f"properties_20260301_0900{idx:02d}.xlsx" for idx in range(5)]
    for name in names:
        (exports_dir / name).write_bytes(b"PK")
    (exports_dir / "notes.txt").write_text("keep me", encoding="utf-8")

    prune_old_exports(keep=2)

    assert sorted(os.listdir(exports_dir)) == sorted(names[-2:] + ["notes.txt"])
    assert latest_export_path() == exports_dir / names[-1]


def test_latest_export_path_without_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "EXPORTS_DIR", tmp_path / "missing")

    assert latest_export_path() is None
