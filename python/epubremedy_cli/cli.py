# SPDX-License-Identifier: AGPL-3.0-only
"""epubremedy command line.

Commands:
  audit      run the built-in auditor and report issues (epubremedy.audit.v1)
  plan       build a remediation plan from detector output (epubremedy.plan.v1)
  remediate  plan, apply automatic fixes and write the repaired package
             (epubremedy.run.v1)
  contrast   check one foreground/background pair (epubremedy.contrast.v1)

Any failure exits with status 3. With ``--json`` the failure is reported as an
``epubremedy.error.v1`` envelope on stdout, otherwise as ``[error] ...`` on
stderr.
"""
import argparse
import json
import logging
import sys
from pathlib import Path

from epubremedy.audit import EpubAuditor, audit_report
from epubremedy.config import CONFIG_FILENAME, Config
from epubremedy.planner import build_plan, plan_summary
from epubremedy.pipeline import remediate, run_detectors
from epubremedy.repairs.contrast import check_pair

from . import _get_version

SCHEMA_REGISTRY = {
    "audit": "epubremedy.audit.v1",
    "plan": "epubremedy.plan.v1",
    "remediate": "epubremedy.run.v1",
    "contrast": "epubremedy.contrast.v1",
    "error": "epubremedy.error.v1",
}

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

logger = logging.getLogger("epubremedy_cli")


def _configure_logging(verbosity):
    """Configure root logging once: WARNING, INFO with -v, DEBUG with -vv."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def _json_default(obj):
    """JSON serializer fallback for CLI payload objects."""
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, Path):
        return str(obj)
    return str(obj)


def _json_dumps(payload, indent=None):
    """JSON serialize payload using CLI defaults."""
    return json.dumps(payload, ensure_ascii=True, indent=indent, default=_json_default)


def _write_json(path, payload):
    """Write payload as pretty JSON with stable CLI serializer rules."""
    Path(path).write_text(_json_dumps(payload, indent=2), encoding="utf-8")


def _load_config(args):
    """Explicit --config must exist; otherwise use ./epubremedy.toml when present."""
    if args.config:
        return Config.load(Path(args.config))
    candidate = Path.cwd() / CONFIG_FILENAME
    if candidate.exists():
        return Config.load(candidate)
    return Config.defaults()


def _read_epub(path):
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"EPUB not found: {p}")
    return p.read_bytes()


def _load_issues(path):
    """Read detector output: a JSON list, or an object with an ``issues`` list."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("issues")
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON list of issues or an object with an 'issues' list")
    return data


def _auditor(settings):
    return EpubAuditor(
        palette=settings.low_contrast_palette,
        background=settings.contrast_background,
        threshold=settings.contrast_threshold,
    )


def _job_id(args):
    return args.job_id or Path(args.epub).stem


def _collect_issues(args, settings, epub_bytes):
    raw = []
    if args.issues:
        raw.extend(_load_issues(args.issues))
    if not args.no_audit:
        raw.extend(run_detectors([_auditor(settings)], epub_bytes))
    return raw


def _emit(args, payload, lines):
    if args.json:
        sys.stdout.write(_json_dumps(payload) + "\n")
        return
    for line in lines:
        sys.stdout.write(line + "\n")


def cmd_audit(args):
    """CLI handler for `epubremedy audit`."""
    settings = _load_config(args).settings()
    issues = _auditor(settings).detect(_read_epub(args.epub))
    report = audit_report(issues)
    if args.out:
        _write_json(args.out, report)
    lines = [f"[ok] {report['total']} issue(s) in {args.epub}"]
    for code, count in report["by_code"].items():
        lines.append(f"  {code}: {count}")
    if args.out:
        lines.append(f"[ok] wrote {args.out}")
    _emit(args, report, lines)


def cmd_plan(args):
    """CLI handler for `epubremedy plan`."""
    settings = _load_config(args).settings()
    epub_bytes = _read_epub(args.epub)
    plan = build_plan(_collect_issues(args, settings, epub_bytes), job_id=_job_id(args), settings=settings)
    payload = plan.to_dict()
    if args.out:
        _write_json(args.out, payload)
    stats = plan.stats
    lines = [
        f"[ok] {plan.total_issues} task(s) for job {plan.job_id}",
        f"  auto: {stats['auto_fixable']}  quickfix: {stats['quick_fixable']}  manual: {stats['manual_required']}",
        f"  duplicates removed: {plan.duplicates_removed}  rejected: {plan.rejected_count}",
    ]
    if not plan.tally_validation.is_valid:
        lines.append(f"[warn] tally check failed with {len(plan.tally_validation.discrepancies)} discrepancy(ies)")
    if args.out:
        lines.append(f"[ok] wrote {args.out}")
    _emit(args, payload, lines)


def cmd_remediate(args):
    """CLI handler for `epubremedy remediate`."""
    settings = _load_config(args).settings()
    epub_bytes = _read_epub(args.epub)
    issues = _collect_issues(args, settings, epub_bytes)
    run = remediate(epub_bytes, job_id=_job_id(args), issues=issues, settings=settings)
    out = Path(args.out)
    out.write_bytes(run.output)
    if args.plan:
        _write_json(args.plan, run.plan.to_dict())
    if args.changes:
        _write_json(args.changes, run.changelog.to_dict())

    payload = run.to_dict()
    payload["ok"] = True
    payload["output"] = str(out)
    payload["bytes_written"] = len(run.output)
    summary = plan_summary(run.plan)
    lines = [
        f"[ok] wrote {out} ({len(run.output)} bytes)",
        f"  completed: {run.results.completed}  failed: {run.results.failed}"
        f"  validator fixes: {run.results.validator_fixes}",
        f"  changes recorded: {len(run.changelog)}  progress: {summary['completion_percentage']}%",
    ]
    for failure in run.results.validator_failures:
        lines.append(f"[warn] {failure}")
    _emit(args, payload, lines)


def cmd_contrast(args):
    """CLI handler for `epubremedy contrast`."""
    threshold = args.threshold
    if threshold is None:
        threshold = _load_config(args).settings().contrast_threshold
    result = check_pair(args.foreground, args.background, threshold)
    verdict = "pass" if result["passes"] else "fail"
    lines = [
        f"[{verdict}] {result['foreground']} on {result['background']}: "
        f"{result['ratio']}:1 (threshold {result['threshold']})",
    ]
    if not result["passes"]:
        lines.append(f"  suggested: {result['suggested']} ({result['suggested_ratio']}:1)")
    _emit(args, result, lines)


def _add_detector_flags(p):
    p.add_argument("--issues", help="JSON file with detector output (list or {\"issues\": [...]})")
    p.add_argument("--no-audit", action="store_true", help="Skip the built-in auditor")
    p.add_argument("--job-id", help="Job identifier used for task ids (default: EPUB file stem)")


def _build_parser():
    """Construct and return the top-level CLI parser."""
    parser = argparse.ArgumentParser(prog="epubremedy")
    parser.add_argument("--config", help=f"Path to {CONFIG_FILENAME}")
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON on stdout")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    parser.add_argument("--version", action="version", version="epubremedy " + _get_version())
    sub = parser.add_subparsers(dest="command", required=True)

    p_audit = sub.add_parser("audit", help="Run the built-in accessibility auditor")
    p_audit.add_argument("epub")
    p_audit.add_argument("--out", help="Also write the report to this file")
    p_audit.set_defaults(func=cmd_audit)

    p_plan = sub.add_parser("plan", help="Build a remediation plan")
    p_plan.add_argument("epub")
    _add_detector_flags(p_plan)
    p_plan.add_argument("--out", help="Also write the plan to this file")
    p_plan.set_defaults(func=cmd_plan)

    p_rem = sub.add_parser("remediate", help="Apply automatic fixes and write the repaired EPUB")
    p_rem.add_argument("epub")
    p_rem.add_argument("--out", required=True)
    _add_detector_flags(p_rem)
    p_rem.add_argument("--changes", help="Write the change log to this file")
    p_rem.add_argument("--plan", help="Write the final plan to this file")
    p_rem.set_defaults(func=cmd_remediate)

    p_con = sub.add_parser("contrast", help="Check a foreground/background color pair")
    p_con.add_argument("foreground")
    p_con.add_argument("background")
    p_con.add_argument("--threshold", type=float)
    p_con.set_defaults(func=cmd_contrast)
    return parser


def main(argv=None):
    """Execute CLI command dispatch and standardized error handling."""
    argv = list(sys.argv[1:] if argv is None else argv)
    force_json = "--json" in argv
    parser = _build_parser()
    args = parser.parse_args([a for a in argv if a != "--json"])
    args.json = force_json
    _configure_logging(args.verbose)
    try:
        args.func(args)
    except Exception as exc:
        logger.debug("command %s failed", args.command, exc_info=True)
        if args.json:
            err = {
                "schema": SCHEMA_REGISTRY["error"],
                "ok": False,
                "code": "CLI_ERROR",
                "message": str(exc),
            }
            sys.stdout.write(json.dumps(err, ensure_ascii=True) + "\n")
        else:
            sys.stderr.write(f"[error] {exc}\n")
        return 3
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
