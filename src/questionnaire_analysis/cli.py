"""CLI entrypoint for the questionnaire analysis engine."""

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path

from questionnaire_analysis import __version__
from questionnaire_analysis.config import Settings
from questionnaire_analysis.io import (
    QuestionnaireDatasetError,
    append_jsonl,
    load_questionnaire_dataset,
    save_json,
    validate_questionnaire_dataset,
)
from questionnaire_analysis.mock_data import write_mock_dataset
from questionnaire_analysis.observability import apply_tracing_env, get_tracing_status
from questionnaire_analysis.orchestrator import JobOrchestrator
from questionnaire_analysis.pipeline import AnalysisEngine, AnonymizationGate
from questionnaire_analysis.schemas import (
    AnalysisType,
    ChunkType,
    JobOptions,
    JobSpec,
    JobStatus,
    StreamEvent,
)
from questionnaire_analysis.storage import (
    InMemoryConsentRegistry,
    InMemoryQuestionnaireRepository,
    InMemoryVectorStore,
    JsonlResultStore,
)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qae",
        description="Privacy-gated LLM analysis of questionnaire responses",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=str,
        default="configs/default.yaml",
        help="Path to YAML config file (default: configs/default.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("info", help="Show current configuration")

    validate_parser = sub.add_parser(
        "validate-input",
        help="Validate a questionnaire dataset JSON file.",
    )
    validate_parser.add_argument("--input", type=str, required=True)
    validate_parser.add_argument(
        "--max-errors",
        type=int,
        default=100,
        help="Maximum number of errors kept in the report (default: 100).",
    )
    validate_parser.add_argument(
        "--report-json",
        type=str,
        default=None,
        help="Optional path to write the validation report as JSON.",
    )

    anonymize_parser = sub.add_parser(
        "anonymize",
        help="Redact PII from a dataset and report what was found.",
    )
    anonymize_parser.add_argument("--input", type=str, required=True)
    anonymize_parser.add_argument(
        "--level",
        type=str,
        choices=["partial", "full"],
        default=None,
        help="Anonymization level (default: from config).",
    )
    anonymize_parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional JSONL path for sanitized responses.",
    )

    mock_parser = sub.add_parser("mock-data", help="Write a synthetic questionnaire dataset.")
    mock_parser.add_argument("--output", type=str, default="data/mock/questionnaire.json")
    mock_parser.add_argument("--responses", type=int, default=24, help="Number of respondents.")
    mock_parser.add_argument("--seed", type=int, default=7)
    mock_parser.add_argument("--pii-rate", type=float, default=0.15)

    analyze_parser = sub.add_parser("analyze", help="Run analyses for one questionnaire dataset.")
    analyze_parser.add_argument("--input", type=str, required=True)
    analyze_parser.add_argument(
        "--types",
        type=str,
        default=",".join(item.value for item in AnalysisType),
        help="Comma-separated analysis types (default: all).",
    )
    analyze_parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Results JSONL path (default: <output_dir>/<questionnaire_id>/results.jsonl).",
    )
    analyze_parser.add_argument("--stream", action="store_true", help="Stream model output.")
    analyze_parser.add_argument(
        "--provider",
        type=str,
        choices=["auto", "openai", "anthropic"],
        default="auto",
    )
    analyze_parser.add_argument("--model", type=str, default=None)
    analyze_parser.add_argument(
        "--language",
        type=str,
        choices=["en", "pl"],
        default="en",
    )

    return parser


def _print_json(payload: dict | list[dict]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def cmd_info(settings: Settings) -> None:
    tracing = get_tracing_status()
    print(f"questionnaire-analysis-engine v{__version__}")
    print(f"  Fast provider:     {settings.fast_provider}")
    print(f"  Premium provider:  {settings.premium_provider}")
    print(f"  OpenAI models:     {settings.openai_fast_model} / {settings.openai_premium_model}")
    print(
        f"  Anthropic models:  {settings.anthropic_fast_model} / "
        f"{settings.anthropic_premium_model}"
    )
    print(f"  OpenAI key:        {settings.key_source_for('openai')}")
    print(f"  Anthropic key:     {settings.key_source_for('anthropic')}")
    print(f"  Jina key:          {settings.key_source_for('jina')}")
    print(f"  Embedding model:   {settings.embedding_model}")
    print(f"  Temperature:       {settings.default_temperature}")
    print(f"  Max tokens:        {settings.default_max_tokens}")
    print(f"  Client retries:    {settings.client_max_retries}")
    print(f"  Backoff seconds:   {settings.client_backoff_seconds}")
    print(
        f"  Provider limit:    {settings.provider_rate_limit_calls} calls / "
        f"{settings.provider_rate_limit_window_seconds}s"
    )
    print(
        f"  Job limit:         {settings.job_rate_limit_calls} jobs / "
        f"{settings.job_rate_limit_window_seconds}s"
    )
    print(f"  Workers:           {settings.worker_count}")
    print(f"  Response cap:      {settings.max_responses_per_prompt}")
    print(f"  Min cluster size:  {settings.min_cluster_size}")
    print(f"  k-anonymity:       {settings.k_anonymity}")
    print(f"  Anonymization:     {settings.anonymization_level}")
    print(f"  Consent type:      {settings.consent_type}")
    print(f"  Quasi-identifiers: {', '.join(settings.quasi_identifier_fields) or '(none)'}")
    print(f"  LangSmith tracing: {tracing['enabled']}")
    print(f"  LangSmith project: {tracing['project'] or '(not set)'}")
    print(f"  LangSmith key set: {tracing['api_key_present']}")
    print(f"  Data dir:          {settings.data_dir}")
    print(f"  Output dir:        {settings.output_dir}")


def cmd_validate_input(settings: Settings, args: argparse.Namespace) -> None:
    report = validate_questionnaire_dataset(args.input, max_errors=args.max_errors)

    print("Input validation complete.")
    print(f"  Schema version:  {report.schema_version}")
    print(f"  Input path:      {report.input_path}")
    print(f"  Questionnaire:   {report.questionnaire_id or '(unreadable)'}")
    print(f"  Groups:          {report.summary.group_count}")
    print(f"  Questions:       {report.summary.question_count}")
    print(f"  Responses:       {report.summary.response_count}")
    print(f"  Respondents:     {report.summary.respondent_count}")
    print(f"  Granted consent: {report.summary.granted_consent_count}")

    if args.report_json:
        report_path = save_json(args.report_json, report.to_dict())
        print(f"  Report JSON:     {report_path}")

    if report.is_valid:
        print("Validation passed.")
        return

    print("Validation failed: fix dataset errors before analyzing.")
    for item in report.errors[:5]:
        print(f"    - {item.location} [{item.code}] {item.message}")
    if report.dropped_error_count > 0:
        print(
            f"    - ... {report.dropped_error_count} additional errors omitted "
            f"(max-errors={args.max_errors})."
        )
    sys.exit(1)


def _load_or_exit(path: str):
    try:
        return load_questionnaire_dataset(path)
    except QuestionnaireDatasetError as exc:
        print(f"Dataset load failed: {exc}")
        sys.exit(1)


def cmd_anonymize(settings: Settings, args: argparse.Namespace) -> None:
    dataset = _load_or_exit(args.input)
    level = args.level or settings.anonymization_level
    gate = AnonymizationGate(
        salt=settings.anonymization_salt or None,
        quasi_identifier_fields=settings.quasi_identifier_fields,
    )
    sanitized = gate.anonymize_responses(dataset.data.responses, level)

    categories: Counter[str] = Counter()
    for response in sanitized:
        for item in response.detected_pii:
            categories[item.category] += item.count

    print(f"Anonymized {len(sanitized)} responses (level={level}).")
    print(f"  Responses with PII: {sum(1 for item in sanitized if item.detected_pii)}")
    for category, count in sorted(categories.items(), key=lambda item: (-item[1], item[0])):
        print(f"    - {category}: {count}")

    if args.output:
        output_path = Path(args.output)
        if output_path.exists():
            output_path.unlink()
        append_jsonl(output_path, sanitized)
        print(f"  Sanitized JSONL: {output_path}")


def cmd_mock_data(settings: Settings, args: argparse.Namespace) -> None:
    path = write_mock_dataset(
        args.output,
        respondents=args.responses,
        seed=args.seed,
        pii_rate=args.pii_rate,
    )
    print(f"Mock dataset written: {path}")


def _parse_types(raw: str) -> list[AnalysisType]:
    types: list[AnalysisType] = []
    for item in raw.split(","):
        name = item.strip().lower()
        if not name:
            continue
        try:
            types.append(AnalysisType(name))
        except ValueError:
            valid = ", ".join(value.value for value in AnalysisType)
            raise SystemExit(f"Unknown analysis type '{name}'. Valid types: {valid}.") from None
    return types


def _stream_printer(event: StreamEvent) -> None:
    if event.chunk_type == ChunkType.CHUNK:
        sys.stdout.write(str(event.payload.get("text", "")))
        sys.stdout.flush()
    elif event.chunk_type == ChunkType.COMPLETE and event.analysis_type is not None:
        print(f"\n  [{event.analysis_type}] complete")
    elif event.chunk_type == ChunkType.ERROR and event.analysis_type is not None:
        kind = event.payload.get("error_kind")
        print(f"\n  [{event.analysis_type}] {kind}: {event.payload.get('message')}")


def cmd_analyze(settings: Settings, args: argparse.Namespace) -> None:
    dataset = _load_or_exit(args.input)
    types = _parse_types(args.types)
    questionnaire_id = dataset.questionnaire_id
    output_path = (
        Path(args.output)
        if args.output
        else Path(settings.output_dir) / questionnaire_id / "results.jsonl"
    )

    result_store = JsonlResultStore(output_path)
    orchestrator = JobOrchestrator(
        settings=settings,
        engine=AnalysisEngine.from_settings(settings, vector_store=InMemoryVectorStore()),
        result_store=result_store,
        questionnaire_repository=InMemoryQuestionnaireRepository([dataset.data]),
        consent_registry=InMemoryConsentRegistry(dataset.consents),
    )
    if args.stream:
        orchestrator.subscribe(_stream_printer)

    job_id = orchestrator.submit(
        JobSpec(
            questionnaire_id=questionnaire_id,
            analysis_types=types,
            options=JobOptions(
                provider=args.provider,
                model=args.model,
                stream=args.stream,
                language=args.language,
            ),
            triggered_by="cli",
        )
    )
    print(f"Analyzing {questionnaire_id}: {', '.join(types)} (job {job_id})")
    orchestrator.drain()
    job = orchestrator.get_status(job_id)

    summary = {
        "job_id": job.job_id,
        "questionnaire_id": questionnaire_id,
        "status": job.status,
        "progress": job.progress,
        "error_kind": job.error_kind,
        "error_message": job.error_message,
        "step_outcomes": job.step_outcomes,
        "results_path": str(output_path),
        "errors": [
            event.payload
            for event in orchestrator.events_for(job_id)
            if event.chunk_type == ChunkType.ERROR
        ],
    }
    save_json(output_path.parent / f"job_{job_id}.json", summary)
    _print_json(summary)
    if job.status != JobStatus.COMPLETED:
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=_LOG_FORMAT)
    settings = Settings.from_yaml(args.config)
    apply_tracing_env(
        enabled=settings.langsmith_tracing,
        api_key=settings.langsmith_api_key,
        project=settings.langsmith_project,
    )

    if args.command == "info":
        cmd_info(settings)
    elif args.command == "validate-input":
        cmd_validate_input(settings, args)
    elif args.command == "anonymize":
        cmd_anonymize(settings, args)
    elif args.command == "mock-data":
        cmd_mock_data(settings, args)
    elif args.command == "analyze":
        cmd_analyze(settings, args)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
