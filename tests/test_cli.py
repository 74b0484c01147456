"""Tests for CLI parser options and the offline commands."""

import json

import pytest

from questionnaire_analysis.cli import _parse_types, build_parser, main
from questionnaire_analysis.schemas import AnalysisType


def test_analyze_parser_accepts_model_flags():
    args = build_parser().parse_args(
        [
            "analyze",
            "--input",
            "data/survey.json",
            "--types",
            "thematic,clusters",
            "--stream",
            "--provider",
            "anthropic",
            "--language",
            "pl",
        ]
    )
    assert args.command == "analyze"
    assert args.input == "data/survey.json"
    assert args.stream is True
    assert args.provider == "anthropic"
    assert args.language == "pl"
    assert args.model is None


def test_analyze_parser_defaults_to_all_types():
    args = build_parser().parse_args(["analyze", "--input", "x.json"])
    assert _parse_types(args.types) == list(AnalysisType)


def test_validate_parser_accepts_report_options():
    args = build_parser().parse_args(
        ["validate-input", "--input", "x.json", "--max-errors", "5", "--report-json", "r.json"]
    )
    assert args.max_errors == 5
    assert args.report_json == "r.json"


def test_parse_types_rejects_unknown_names():
    assert _parse_types(" Thematic , ,insights") == [AnalysisType.THEMATIC, AnalysisType.INSIGHTS]
    with pytest.raises(SystemExit):
        _parse_types("thematic,sentiment")


def test_mock_validate_and_anonymize_commands(tmp_path, capsys):
    config = str(tmp_path / "missing.yaml")
    dataset_path = tmp_path / "mock.json"
    main(["--config", config, "mock-data", "--output", str(dataset_path), "--responses", "6"])
    assert dataset_path.exists()

    report_path = tmp_path / "report.json"
    main(
        [
            "--config",
            config,
            "validate-input",
            "--input",
            str(dataset_path),
            "--report-json",
            str(report_path),
        ]
    )
    assert json.loads(report_path.read_text(encoding="utf-8"))["is_valid"] is True

    sanitized_path = tmp_path / "sanitized.jsonl"
    main(
        [
            "--config",
            config,
            "anonymize",
            "--input",
            str(dataset_path),
            "--level",
            "partial",
            "--output",
            str(sanitized_path),
        ]
    )
    payload = json.loads(dataset_path.read_text(encoding="utf-8"))
    rows = sanitized_path.read_text(encoding="utf-8").splitlines()
    assert len(rows) == len(payload["responses"])
    assert all(json.loads(row)["id"].startswith("anon_") for row in rows)

    output = capsys.readouterr().out
    assert "Validation passed." in output
    assert "level=partial" in output


def test_validate_input_exits_nonzero_on_invalid_dataset(tmp_path, capsys):
    broken = tmp_path / "broken.json"
    broken.write_text(json.dumps({"questionnaire": {"questionnaire_id": "q"}}), encoding="utf-8")
    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(tmp_path / "none.yaml"), "validate-input", "--input", str(broken)])
    assert exc_info.value.code == 1
    assert "Validation failed" in capsys.readouterr().out


def test_info_prints_configuration(tmp_path, capsys):
    config = tmp_path / "config.yaml"
    config.write_text("min_cluster_size: 7\n")
    main(["--config", str(config), "info"])
    output = capsys.readouterr().out
    assert "questionnaire-analysis-engine" in output
    assert "Min cluster size:  7" in output


def test_anonymize_output_never_contains_matched_pii(tmp_path, capsys):
    config = str(tmp_path / "missing.yaml")
    dataset_path = tmp_path / "mock.json"
    main(
        [
            "--config",
            config,
            "mock-data",
            "--output",
            str(dataset_path),
            "--responses",
            "8",
            "--pii-rate",
            "1.0",
        ]
    )
    sanitized_path = tmp_path / "sanitized.jsonl"
    main(
        [
            "--config",
            config,
            "anonymize",
            "--input",
            str(dataset_path),
            "--output",
            str(sanitized_path),
        ]
    )

    written = sanitized_path.read_text(encoding="utf-8")
    assert "@example.test" not in written
    assert "+48 600" not in written
    rows = [json.loads(row) for row in written.splitlines()]
    assert all(row["detected_pii"] for row in rows)
    for row in rows:
        for item in row["detected_pii"]:
            assert set(item) == {"category", "count"}
    assert "Responses with PII: " in capsys.readouterr().out
