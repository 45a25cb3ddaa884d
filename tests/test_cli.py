import pytest

from engine import cli


def test_parser_reads_run_options():
    args = cli.build_parser().parse_args(
        ["--catalog", "plan.toml", "--test", "login", "--env", "qa", "--on-row-failure", "continue"]
    )

    assert args.catalog == "plan.toml"
    assert args.test == "login"
    assert args.env == "qa"
    assert args.on_row_failure == "continue"
    assert args.start_page is None


def test_parser_rejects_unknown_row_policy():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--catalog", "plan.toml", "--test", "x", "--on-row-failure", "retry"])


def test_missing_catalog_is_a_usage_error(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--catalog", str(tmp_path / "missing.toml"), "--test", "login"])

    assert excinfo.value.code == 2


def test_unknown_test_id_is_a_usage_error(tmp_path):
    catalog = tmp_path / "plan.toml"
    catalog.write_text('[pages.home]\npath = "/"\n', encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--catalog", str(catalog), "--test", "login"])

    assert excinfo.value.code == 2
