from pathlib import Path

import pytest

import agency_ledger.config as config
from agency_ledger.dre import DEFAULT_TAX_RATE


def test_build_app_config_defaults(tmp_path):
    """An empty configuration falls back to every built-in default."""
    app = config.build_app_config({}, tmp_path)

    assert app.database is not None
    assert app.database.engine == "sqlite"
    assert app.database.path == (tmp_path / config.DEFAULT_DB_PATH).resolve()
    assert app.currency == "BRL"
    assert app.default_tax_rate == DEFAULT_TAX_RATE
    assert app.upcoming_days == 7
    assert app.day_overflow == "roll-forward"
    assert app.override_paused is True
    assert app.display_mode == "table"
    assert app.amount_decimals == 2
    assert app.log_level == "WARNING"


def test_build_app_config_reads_every_section(tmp_path):
    raw = {
        "database": {"engine": "sqlite", "path": "db/ledger.sqlite"},
        "company": {"currency": "EUR"},
        "reporting": {"default_tax_rate": 6.5},
        "billing": {"upcoming_days": 14},
        "installments": {"day_overflow": "clamp"},
        "reconciler": {"override_paused": False},
        "display": {"mode": "both", "amount_decimals": 0},
        "logging": {"level": "debug"},
    }

    app = config.build_app_config(raw, tmp_path)

    assert app.database.path == (tmp_path / "db" / "ledger.sqlite").resolve()
    assert app.currency == "EUR"
    assert app.default_tax_rate == 6.5
    assert app.upcoming_days == 14
    assert app.day_overflow == "clamp"
    assert app.override_paused is False
    assert app.display_mode == "both"
    assert app.amount_decimals == 0
    assert app.log_level == "DEBUG"


def test_database_can_be_disabled(tmp_path):
    app = config.build_app_config({"database": {"enabled": False}}, tmp_path)
    assert app.database is None


@pytest.mark.parametrize(
    "raw",
    [
        {"installments": {"day_overflow": "wrap"}},
        {"display": {"mode": "html"}},
        {"logging": {"level": "LOUD"}},
        {"reporting": {"default_tax_rate": "eleven"}},
        {"reporting": {"default_tax_rate": 150}},
        {"billing": {"upcoming_days": "soon"}},
    ],
)
def test_build_app_config_rejects_invalid_values(tmp_path, raw):
    with pytest.raises(ValueError):
        config.build_app_config(raw, tmp_path)


def test_load_app_config_resolves_paths_relative_to_the_file(tmp_path):
    cfg_dir = tmp_path / "conf"
    cfg_dir.mkdir()
    cfg_file = cfg_dir / "ledger.toml"
    cfg_file.write_text(
        '[database]\npath = "../data/ledger.sqlite"\n\n[company]\ncurrency = "USD"\n',
        encoding="utf-8",
    )

    app = config.load_app_config(str(cfg_file))

    assert app.database.path == (tmp_path / "data" / "ledger.sqlite").resolve()
    assert app.currency == "USD"


def test_load_app_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_app_config(str(tmp_path / "missing.toml"))

    broken = tmp_path / "broken.toml"
    broken.write_text("[database\npath = 1\n", encoding="utf-8")
    with pytest.raises(ValueError):
        config.load_app_config(str(broken))


def test_load_app_config_without_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    app = config.load_app_config()

    assert app.database.path == (Path(tmp_path) / config.DEFAULT_DB_PATH).resolve()


def test_example_config_file_is_valid():
    example = Path(__file__).resolve().parents[1] / config.DEFAULT_CONFIG_FILENAME

    app = config.load_app_config(str(example))

    assert app.default_tax_rate == DEFAULT_TAX_RATE
    assert app.day_overflow == "roll-forward"
