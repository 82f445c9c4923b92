import logging

from goal_planner.core.config import Settings, load_settings
from goal_planner.core.errors import ConfigError
from goal_planner.core.logging_config import setup_logging


def test_defaults_without_file_or_env():
    assert load_settings(env={}) == Settings()


def test_file_then_env_precedence(tmp_path):
    cfg = tmp_path / "planner.yaml"
    cfg.write_text("store_path: from-file.yaml\nuser_id: filey\nlog_level: info\n", encoding="utf-8")

    s = load_settings(str(cfg), env={"GOAL_PLANNER_USER": "envy"})
    assert s.store_path == "from-file.yaml"
    assert s.user_id == "envy"
    assert s.log_level == "INFO"


def test_config_path_from_env(tmp_path):
    cfg = tmp_path / "planner.yaml"
    cfg.write_text("log_file: planner.log\n", encoding="utf-8")
    s = load_settings(env={"GOAL_PLANNER_CONFIG": str(cfg)})
    assert s.log_file == "planner.log"


def test_unknown_setting_rejected(tmp_path):
    cfg = tmp_path / "planner.yaml"
    cfg.write_text("stor_path: typo.yaml\n", encoding="utf-8")
    try:
        load_settings(str(cfg), env={})
        assert False, "expected ConfigError"
    except ConfigError as e:
        assert e.code == "E_UNKNOWN_SETTING"
        assert "stor_path" in e.message


def test_missing_config_file(tmp_path):
    try:
        load_settings(str(tmp_path / "nope.yaml"), env={})
        assert False, "expected ConfigError"
    except ConfigError as e:
        assert e.code == "E_CONFIG_NOT_FOUND"


def test_invalid_values_rejected(tmp_path):
    blank_user = tmp_path / "blank.yaml"
    blank_user.write_text("user_id: '  '\n", encoding="utf-8")
    for args, env, code in [
        ((), {"GOAL_PLANNER_LOG_LEVEL": "LOUD"}, "E_INVALID_LOG_LEVEL"),
        ((str(blank_user),), {}, "E_REQUIRED_FIELD"),
    ]:
        try:
            load_settings(*args, env=env)
            assert False, f"expected ConfigError for {env}"
        except ConfigError as e:
            assert e.code == code


def test_setup_logging_sets_package_level(tmp_path):
    log_file = tmp_path / "planner.log"
    setup_logging("DEBUG", str(log_file))
    logging.getLogger("goal_planner.test").debug("hello from test")
    for h in logging.getLogger().handlers:
        h.flush()
    assert logging.getLogger("goal_planner").level == logging.DEBUG
    assert "hello from test" in log_file.read_text(encoding="utf-8")
    setup_logging("WARNING")
