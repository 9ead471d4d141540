"""
Tests for the command-line entry point.

Covers:
- Argument parsing for each command
- Benchmark files in JSON and CSV form
- Early exits before any database connection
"""

import json
from decimal import Decimal

import pytest

from scripts.incentive_cli import _parse_args, load_benchmark_file, main


class TestParseArgs:
    def test_calculate(self):
        args = _parse_args(["calculate", "--tenant", "t", "--period", "p", "--rule-set", "r"])

        assert args.command == "calculate"
        assert args.rule_set == "r"
        assert args.config == "default"
        assert args.with_log is False

    def test_investigate_override(self):
        args = _parse_args([
            "investigate", "--tenant", "t", "--dispute", "d", "--adjust-min-confidence", "0.9",
        ])

        assert args.adjust_min_confidence == Decimal("0.9")

    def test_converge_defaults_to_all_plans(self):
        assert _parse_args(["converge", "--tenant", "t"]).rule_set is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            _parse_args([])


class TestLoadBenchmarkFile:
    def test_json_list(self, tmp_path):
        path = tmp_path / "bench.json"
        path.write_text(json.dumps([{"entity_external_id": "E-1", "amount": "10"}]))

        assert load_benchmark_file(path) == [{"entity_external_id": "E-1", "amount": "10"}]

    def test_json_records_key(self, tmp_path):
        path = tmp_path / "bench.json"
        path.write_text(json.dumps({"records": [{"entity_external_id": "E-1", "amount": 5}]}))

        assert load_benchmark_file(path)[0]["amount"] == 5

    def test_json_scalar_rejected(self, tmp_path):
        path = tmp_path / "bench.json"
        path.write_text("42")

        with pytest.raises(ValueError):
            load_benchmark_file(path)

    def test_csv_trimmed(self, tmp_path):
        path = tmp_path / "bench.csv"
        path.write_text("entity_external_id, amount ,component\nE-1 , 1200.50,\n")

        assert load_benchmark_file(path) == [
            {"entity_external_id": "E-1", "amount": "1200.50", "component": ""},
        ]


class TestMainEarlyExit:
    """Failures that are reported before a database is touched."""

    def test_missing_benchmark_file(self, tmp_path, capsys):
        code = main([
            "reconcile", "--tenant", "t", "--batch", "b", "--benchmark", str(tmp_path / "none.csv"),
        ])

        assert code == 1
        assert "File not found" in capsys.readouterr().err

    def test_unknown_config_set(self, capsys):
        code = main(["--config", "no-such-set", "converge", "--tenant", "t"])

        assert code == 1
        assert "no-such-set" in capsys.readouterr().err
