#!/usr/bin/env python3
"""
Study Flow Engine - command line entry point.

Usage:
    python main.py generate --protocol-id P-001 --endpoints endpoints.json -o flow.json
    python main.py validate flow.json --context context.json -o output/
    python main.py autofix flow.json --report output/flow_validation_report.json -o fixed.json
    python main.py export flow.json --format excel -o top.xlsx
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
load_dotenv()

from core.config import load_config
from core.errors import StudyFlowError
from core.logging_config import configure_logging

# Logging is configured later in main() after arg parsing.
logger = logging.getLogger(__name__)

from studyflow.engine import StudyFlowEngine
from studyflow.schema import FixStrategy, FlowIssue, StudyFlow
from studyflow.top.top_export import ExportFormat
from studyflow.validation import check_study_flow_consistency, save_validation_report
from studyflow.validation.engine import RuleId


def _read_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _write_json(data: Any, path: str) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def _read_text(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    return Path(path).read_text(encoding='utf-8')


def _load_flow(path: str) -> StudyFlow:
    return StudyFlow.from_dict(_read_json(path))


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

def cmd_generate(engine: StudyFlowEngine, args: argparse.Namespace) -> int:
    endpoints = _read_json(args.endpoints) if args.endpoints else []
    visit_labels = _read_json(args.visits) if args.visits else None
    flow = engine.generate_flow(
        args.protocol_id,
        endpoints,
        visit_labels=visit_labels,
        phase=args.phase,
        duration_weeks=args.duration_weeks,
        study_id=args.study_id,
    )
    _write_json(flow.to_dict(), args.output)
    logger.info(f"Study flow written to {args.output}")
    return 0


def cmd_validate(engine: StudyFlowEngine, args: argparse.Namespace) -> int:
    flow = _load_flow(args.flow)
    context = _read_json(args.context) if args.context else None
    rules = [RuleId(r) for r in args.rules] if args.rules else None

    result = engine.validate_flow(flow, context, rules)
    result.issues.extend(check_study_flow_consistency(
        flow,
        protocol_text=_read_text(args.protocol_text),
        icf_text=_read_text(args.icf_text),
        csr_text=_read_text(args.csr_text),
    ))

    save_validation_report(result, args.output_dir)
    summary = result.summary
    print(f"Issues: {summary['total']} (critical {summary['critical']}, error {summary['error']}, "
          f"warning {summary['warning']}, info {summary['info']})")
    if args.strict and result.has_blocking_issues:
        return 1
    return 0


def cmd_autofix(engine: StudyFlowEngine, args: argparse.Namespace) -> int:
    flow = _load_flow(args.flow)
    issues: List[FlowIssue] = []
    if args.report:
        issues = [FlowIssue.from_dict(i) for i in _read_json(args.report).get('issues', [])]

    issue_ids = args.issues or [i.id for i in issues if i.auto_fixable]
    if not issue_ids:
        logger.warning("No issues selected for auto-fix")

    result = engine.apply_auto_fix(flow, issue_ids, args.strategy, issues)
    _write_json(result.to_dict() if args.full_result else result.updated_flow.to_dict(), args.output)

    for error in result.errors:
        logger.warning(f"Rejected: {error}")
    summary = result.summary
    print(f"Changes applied: {summary['changesApplied']}, rejected: {summary['changesRejected']}, "
          f"issues fixed: {summary['issuesFixed']}")
    return 0


def cmd_export(engine: StudyFlowEngine, args: argparse.Namespace) -> int:
    flow = _load_flow(args.flow)
    output = engine.export_top(flow.top_matrix, args.format, args.output)
    if args.output is None:
        print(output)
    else:
        logger.info(f"ToP exported to {args.output}")
    return 0


COMMANDS = {
    'generate': cmd_generate,
    'validate': cmd_validate,
    'autofix': cmd_autofix,
    'export': cmd_export,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate, validate, repair and export clinical study flows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py generate --protocol-id P-001 --duration-weeks 12 -o flow.json
    python main.py generate --protocol-id P-001 --visits visits.json --endpoints endpoints.json -o flow.json
    python main.py validate flow.json --context context.json --icf-text icf.txt -o output/
    python main.py autofix flow.json --issues MISSING_BASELINE -o fixed.json
    python main.py export flow.json --format markdown
        """
    )
    parser.add_argument("--config", "-c", metavar="PATH", help="Engine config file (YAML or JSON)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")

    log_group = parser.add_argument_group('Logging')
    log_group.add_argument("--json-log", action="store_true", help="Emit structured JSON log lines to stderr")
    log_group.add_argument("--log-file", type=str, metavar="PATH", help="Write JSON logs to file")

    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate a study flow")
    gen.add_argument("--protocol-id", required=True, help="Protocol identifier")
    gen.add_argument("--study-id", help="Study identifier")
    gen.add_argument("--endpoints", metavar="PATH", help="JSON list of endpoint names or objects")
    gen.add_argument("--visits", metavar="PATH", help="JSON list of visit labels")
    gen.add_argument("--duration-weeks", type=int, help="Treatment duration when no visits are given")
    gen.add_argument("--phase", help="Study phase (informational)")
    gen.add_argument("--output", "-o", required=True, metavar="PATH", help="Output flow JSON")

    val = sub.add_parser("validate", help="Validate a study flow")
    val.add_argument("flow", help="Study flow JSON")
    val.add_argument("--context", metavar="PATH", help="JSON with endpointMaps, icf and sap")
    val.add_argument("--rules", nargs="+", choices=[r.value for r in RuleId], help="Rules to run (default: all)")
    val.add_argument("--protocol-text", metavar="PATH", help="Protocol body text for consistency checks")
    val.add_argument("--icf-text", metavar="PATH", help="ICF body text for consistency checks")
    val.add_argument("--csr-text", metavar="PATH", help="CSR body text for consistency checks")
    val.add_argument("--output-dir", "-o", default="output", help="Report directory (default: output)")
    val.add_argument("--strict", action="store_true", help="Exit 1 on critical or error issues")

    fix = sub.add_parser("autofix", help="Apply automatic fixes")
    fix.add_argument("flow", help="Study flow JSON")
    fix.add_argument("--issues", nargs="+", metavar="ISSUE_ID", help="Issue ids to fix")
    fix.add_argument("--report", metavar="PATH", help="Validation report; fixes every auto-fixable issue "
                                                     "unless --issues is given")
    fix.add_argument("--strategy", choices=[s.value for s in FixStrategy],
                     default=FixStrategy.CONSERVATIVE.value, help="Fix strategy (default: conservative)")
    fix.add_argument("--full-result", action="store_true", help="Write the full auto-fix result, not just the flow")
    fix.add_argument("--output", "-o", required=True, metavar="PATH", help="Output JSON")

    exp = sub.add_parser("export", help="Export the Table of Procedures")
    exp.add_argument("flow", help="Study flow JSON")
    exp.add_argument("--format", "-f", choices=[f.value for f in ExportFormat],
                     default=ExportFormat.MARKDOWN.value, help="Export format (default: markdown)")
    exp.add_argument("--output", "-o", metavar="PATH", help="Output file (text formats print when omitted)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging (must happen before any log output)
    configure_logging(
        json_mode=args.json_log,
        log_file=args.log_file,
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    try:
        engine = StudyFlowEngine(config=load_config(args.config))
        return COMMANDS[args.command](engine, args)
    except (StudyFlowError, OSError, ValueError, KeyError) as e:
        logger.error(f"{args.command} failed: {e}")
        if args.verbose:
            logger.exception("Traceback")
        return 1


if __name__ == "__main__":
    sys.exit(main())
