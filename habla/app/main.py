from __future__ import annotations

import json
import logging
import sys

from habla.app.config import resolve_args
from habla.app.diagnostics import hint_for_failure, summarize_exception
from habla.app.logging_setup import log_event, setup_app_logger
from habla.app.services import HablaServices, build_request, build_services
from habla.audio.source import AudioSource
from habla.contracts import PipelineFailure, PipelineRun
from habla.errors import HablaError


def _print_failure(failure: PipelineFailure) -> None:
    print(f"[{failure.stage}] {failure.error_kind}: {failure.message}", file=sys.stderr)
    print(f"Hint: {hint_for_failure(failure.error_kind)}", file=sys.stderr)


def _print_run(run: PipelineRun, services: HablaServices) -> None:
    print(run.translation.translated_text)
    summary = run.to_dict()
    snap = services.sampler.snapshot() if services.sampler is not None else None
    # a run that ends before the first tick has no peaks to report
    if snap is not None and snap.samples:
        summary["peakCpuPercent"] = snap.peak_cpu_percent
        summary["peakMemoryBytes"] = snap.peak_memory_bytes
    print(json.dumps(summary, ensure_ascii=False), file=sys.stderr)


def _serve(services: HablaServices, args) -> int:
    import uvicorn

    from habla.app.web import create_app

    app = create_app(services, args)
    print(f"habla UI on http://{args.host}:{int(args.port)}")
    uvicorn.run(app, host=str(args.host), port=int(args.port), log_level="info" if args.verbose else "warning")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = resolve_args(argv)
    logger, _log_dir, log_path = setup_app_logger(verbose=bool(args.verbose))
    log_event(logger, logging.INFO, "app_start", config_path=str(getattr(args, "config", "")), argv=argv or [])

    if args.list_devices:
        try:
            print(AudioSource.list_devices())
        except HablaError as e:
            print(e.message, file=sys.stderr)
            return 1
        return 0

    try:
        request = None if args.ui else build_request(args)
        services = build_services(args)
    except HablaError as e:
        log_event(logger, logging.ERROR, "startup_failed", error_kind=e.kind, detail=e.message)
        _print_failure(PipelineFailure(stage=e.stage or "configure", error_kind=e.kind, message=e.message))
        return 1

    if args.ui:
        return _serve(services, args)

    try:
        if services.sampler is not None:
            services.sampler.start()
        outcome = services.orchestrator.run(request)
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "app_interrupted")
        return 130
    except Exception as e:
        logger.exception("app_crash")
        print(summarize_exception(str(e)), file=sys.stderr)
        print(f"Logs: {log_path}", file=sys.stderr)
        return 1
    finally:
        services.close()

    if isinstance(outcome, PipelineFailure):
        _print_failure(outcome)
        return 1
    _print_run(outcome, services)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
