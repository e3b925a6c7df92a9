"""Command-line interface for stack-deployer."""

from __future__ import annotations

import argparse
import json
import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from .config import AppConfig, SkipFlags, VerificationOptions, load_config
from .errors import ConfigurationError
from .orchestrator import PipelineController, PipelineRun, PipelineServices, RunLog, Stage
from .report import write_state_report
from .stages import build_deployment_stages, build_verification_stages
from .tools import PrerequisiteProbe, ToolInvoker
from .tunnel import TunnelManager
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    invoker: ToolInvoker


def _add_verification_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--monitoring-check", action="store_true",
        help="Probe Prometheus, Grafana and Alertmanager (warnings only)",
    )
    parser.add_argument(
        "--security-check", action="store_true",
        help="Check network policies, pod security context and service account",
    )
    parser.add_argument(
        "--backup-check", action="store_true",
        help="Check the Helm release and its rollback history",
    )
    parser.add_argument(
        "--report", action="store_true",
        help="Write a timestamped plain-text state report after the run",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stack-deployer",
        description="Deploy the application stack to Kubernetes in dependency order.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Log every external command at DEBUG level.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser(
        "deploy", help="Run the full deployment pipeline"
    )
    deploy_parser.add_argument(
        "--skip-infrastructure", action="store_true",
        help="Skip infrastructure deployment, kubectl configuration and ingress controller",
    )
    deploy_parser.add_argument(
        "--skip-monitoring", action="store_true",
        help="Skip monitoring stack deployment",
    )
    deploy_parser.add_argument(
        "--skip-image-build", action="store_true",
        help="Skip Docker image build and push",
    )
    deploy_parser.add_argument(
        "--image-tag", type=str, default=None,
        help="Image tag to build and release (default from config)",
    )
    _add_verification_flags(deploy_parser)

    verify_parser = subparsers.add_parser(
        "verify", help="Verify an existing deployment without changing it"
    )
    _add_verification_flags(verify_parser)

    # logs 子命令 - 查看流水线运行记录
    logs_parser = subparsers.add_parser(
        "logs", help="View pipeline run logs"
    )
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest run log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )
    logs_parser.add_argument(
        "--summary", "-s", action="store_true",
        help="Show summary only (not command output)"
    )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    if getattr(args, "image_tag", None):
        config.image.tag = args.image_tag
    return CLIContext(
        config=config,
        invoker=ToolInvoker(default_timeout=config.pipeline.command_timeout),
    )


def _verification_options(args: argparse.Namespace) -> VerificationOptions:
    return VerificationOptions(
        monitoring_check=args.monitoring_check,
        security_check=args.security_check,
        backup_check=args.backup_check,
        generate_report=args.report,
    )


@contextmanager
def _cancel_on_sigterm() -> Iterator[threading.Event]:
    """SIGTERM sets the cancel event so waits stop and cleanup still runs."""
    cancel_event = threading.Event()
    try:
        previous = signal.signal(signal.SIGTERM, lambda signum, frame: cancel_event.set())
    except ValueError:
        # 非主线程无法安装信号处理器
        previous = None
    try:
        yield cancel_event
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)


def run_pipeline(
    context: CLIContext,
    stages: List[Stage],
    flags: SkipFlags,
    options: VerificationOptions,
) -> PipelineRun:
    config = context.config
    services = PipelineServices(
        config=config,
        invoker=context.invoker,
        tunnels=TunnelManager(settle_timeout=config.verification.tunnel_settle_timeout),
        options=options,
    )
    with _cancel_on_sigterm() as cancel_event:
        controller = PipelineController(
            services,
            run_log=RunLog(config.pipeline.log_dir),
            cancel_event=cancel_event,
        )
        run = controller.execute(stages, flags)

    if options.generate_report:
        write_state_report(context.invoker, config, config.verification.report_dir)
    return run


def show_access_info(config: AppConfig) -> None:
    host = config.release.ingress_host
    namespace = config.cluster.namespace
    monitoring = config.cluster.monitoring_namespace
    release = config.release.release_name
    print("")
    print("🌐 Application URLs:")
    print(f"   - Health:  http://{host}{config.verification.health_path}")
    print(f"   - Metrics: http://{host}{config.verification.metrics_path}")
    for path in config.verification.smoke_paths:
        print(f"   - API:     http://{host}{path}")
    print("")
    print("📊 Monitoring URLs (Port Forward Required):")
    for service, (remote_port, local_port, _) in config.verification.monitoring_services.items():
        print(f"   - {service}: kubectl port-forward svc/{service} {local_port}:{remote_port} -n {monitoring}")
    print("")
    print("🔧 Useful Commands:")
    print(f"   - View logs: kubectl logs -f deployment/{release} -n {namespace}")
    print(f"   - Scale app: kubectl scale deployment {release} --replicas=3 -n {namespace}")
    print(f"   - Check HPA: kubectl get hpa -n {namespace}")
    print(f"   - History:   helm history {release} -n {namespace}")
    print("")


def handle_deploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    flags = SkipFlags(
        skip_infrastructure=args.skip_infrastructure,
        skip_monitoring=args.skip_monitoring,
        skip_image_build=args.skip_image_build,
    )
    PrerequisiteProbe(context.invoker).check(flags)
    run = run_pipeline(context, build_deployment_stages(context.config), flags, _verification_options(args))
    if run.ok:
        show_access_info(context.config)
        logger.info("🎉 Deployment completed successfully!")
        return EXIT_OK
    return EXIT_FAILED


def handle_verify_command(args: argparse.Namespace, context: CLIContext) -> int:
    # 仅验证：只需要 kubectl 和 helm
    flags = SkipFlags(skip_infrastructure=True, skip_monitoring=True, skip_image_build=True)
    PrerequisiteProbe(context.invoker).check(flags)
    run = run_pipeline(context, build_verification_stages(context.config), flags, _verification_options(args))
    if run.ok:
        logger.info("🎉 All verification checks passed!")
        return EXIT_OK
    return EXIT_FAILED


def handle_logs_command(args: argparse.Namespace, log_dir: Path) -> int:
    """Handle the logs subcommand."""
    if not log_dir.exists():
        print("📁 No run logs found. Run a deployment first.")
        return EXIT_OK

    log_files = sorted(log_dir.glob("deploy_*.json"), key=lambda p: p.name, reverse=True)
    if not log_files:
        print("📁 No run logs found.")
        return EXIT_OK

    if args.list_logs:
        print(f"📁 Run logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<16} {'Stages':<8} {'Time':<20} {'File'}")
        print("-" * 80)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                print(f"{i:<4} ❓ {'error':<14} {'?':<8} {'?':<20} {log_file.name}")
                continue
            status = data.get("status", "unknown")
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            print(f"{i:<4} {_status_icon(status)} {status:<14} {len(data.get('stages', [])):<8} "
                  f"{start_time:<20} {log_file.name}")
        return EXIT_OK

    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return EXIT_FAILED
    else:
        target_file = log_files[0]

    show_log_file(target_file, summary_only=args.summary)
    return EXIT_OK


def _status_icon(status: str) -> str:
    return {
        "success": "✅",
        "failed": "❌",
        "skipped": "⏭️",
        "partial_skip": "⏭️",
        "running": "🔄",
    }.get(status, "❓")


def show_log_file(log_file: Path, summary_only: bool = False) -> None:
    """Display a pipeline run log file."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")
    print(f"\n{'='*60}")
    print(f"📄 Run Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"⏰ Started:    {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:      {data.get('end_time', 'N/A')}")
    print(f"{_status_icon(status)} Status:     {status}")
    print(f"🚩 Flags:      {', '.join(k for k, v in data.get('flags', {}).items() if v) or 'none'}")
    print(f"{'='*60}\n")

    for stage in data.get("stages", []):
        stage_status = stage.get("status", "?")
        line = f"[{stage.get('ordinal', '?')}] {_status_icon(stage_status)} {stage.get('name', '?')}"
        if stage.get("reason"):
            line += f" ({stage['reason']})"
        print(line)
        if stage.get("error"):
            print(f"    ❗ {stage['error']}")
        for warning in stage.get("warnings", []):
            print(f"    ⚠️ {warning}")

        for cmd in stage.get("commands", []):
            print(f"    $ {cmd.get('command', '')}  → exit {cmd.get('exit_code', '?')}")
            if summary_only:
                continue
            stdout = (cmd.get("stdout") or "").strip()
            if stdout:
                lines = stdout.split("\n")
                for out_line in lines[:10]:
                    print(f"    │ {out_line[:100]}")
                if len(lines) > 10:
                    print(f"    │ ... ({len(lines)} lines total)")
        print()

    for warning in data.get("cleanup_warnings", []):
        print(f"⚠️ cleanup: {warning}")
    print(f"{'='*60}")
    print(f"📄 Full log: {log_file}")
    print(f"{'='*60}\n")


def dispatch_command(args: argparse.Namespace) -> int:
    context = _build_context(args)

    if args.command == "logs":
        return handle_logs_command(args, Path(context.config.pipeline.log_dir))

    if args.command == "deploy":
        return handle_deploy_command(args, context)

    if args.command == "verify":
        return handle_verify_command(args, context)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)
    try:
        return dispatch_command(args)
    except ConfigurationError as exc:
        logger.error(f"❌ {exc}")
        return EXIT_USAGE
    except KeyboardInterrupt:
        logger.error("⛔ Interrupted")
        return EXIT_INTERRUPTED
