"""Tests for the snapshot setup script."""

from __future__ import annotations

import json

import setup_store


def test_main_creates_empty_snapshot_from_config(config_factory, capsys):
    bundle = config_factory(make_relative=True, initialize=False)

    assert setup_store.main(["--config", str(bundle.config_path)]) == 0

    payload = json.loads(bundle.data_path.read_text(encoding="utf-8"))
    assert payload == {"customers": [], "products": [], "invoices": [], "customPrices": {}}
    assert "[SUCCESS]" in capsys.readouterr().out


def test_main_refuses_to_overwrite_without_force(config_factory, capsys):
    bundle = config_factory()
    bundle.data_path.write_text("keep me", encoding="utf-8")

    assert setup_store.main(["--config", str(bundle.config_path)]) == 1
    assert bundle.data_path.read_text(encoding="utf-8") == "keep me"
    assert "--force" in capsys.readouterr().out

    assert setup_store.main(["--config", str(bundle.config_path), "--force"]) == 0
    assert json.loads(bundle.data_path.read_text(encoding="utf-8"))["invoices"] == []


def test_main_reports_missing_config(tmp_path):
    assert setup_store.main(["--config", str(tmp_path / "absent.ini")]) == 1
