import json

from examples.planning_agent.backend.config import (
    PlannerConfig,
    config_from_mapping,
    load_from_env,
    load_planner_config,
)


def test_urls_are_built_from_company_and_extension():
    cfg = PlannerConfig(base_url="https://ledger.test/v2.0", environment="prod", company_id="c1")

    assert cfg.standard_api_url == "https://ledger.test/v2.0/prod/api/v2.0/companies(c1)"
    assert cfg.extension_api_url == "https://ledger.test/v2.0/prod/api/knowall/thyme/v1.0/companies(c1)"


def test_bad_numbers_fall_back_to_defaults():
    cfg = config_from_mapping({"fan_out": "lots", "daily_ceiling": "-3", "weeks_to_show": "2", "unknown": 1})

    assert cfg.fan_out == 5
    assert cfg.daily_ceiling == 24.0
    assert cfg.weeks_to_show == 2


def test_file_is_read_under_ledger_key(tmp_path):
    path = tmp_path / "planner.json"
    path.write_text(json.dumps({"ledger": {"company_id": "abc", "fan_out": 3}}), encoding="utf-8")

    cfg = load_planner_config(str(path))

    assert (cfg.company_id, cfg.fan_out) == ("abc", 3)


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "planner.json"
    path.write_text(json.dumps({"company_id": "from-file", "palette_size": 8}), encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PLANNER_CONFIG_PATH", str(path))
    monkeypatch.setenv("PLANNER_COMPANY_ID", "from-env")
    monkeypatch.setenv("PLANNER_HOURS_PRECISION", "1")

    cfg = load_from_env()

    assert cfg.company_id == "from-env"
    assert cfg.palette_size == 8
    assert cfg.hours_precision == 1
