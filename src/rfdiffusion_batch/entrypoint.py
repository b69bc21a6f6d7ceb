from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from typing import Callable, Mapping

from .config import StatusEndpoint, config_from_env, job_id_from_env, status_endpoint_from_env
from .errors import ConfigurationError, JobTerminated
from .failure import FailureHandler
from .orchestrator import JobOrchestrator
from .status import StatusReporter, StatusSink

logger = logging.getLogger("JobEntrypoint")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ReporterFactory = Callable[..., StatusSink]


def configure_logging(environ: Mapping[str, str] | None = None) -> None:
    env = os.environ if environ is None else environ
    level = (env.get("RFD_LOG_LEVEL") or "INFO").strip().upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def _raise_terminated(signum: int, frame: object) -> None:
    raise JobTerminated(f"job terminated by signal {signum}")


def install_signal_handlers() -> None:
    if threading.current_thread() is not threading.main_thread():
        return
    signal.signal(signal.SIGTERM, _raise_terminated)


def _fallback_endpoint(environ: Mapping[str, str]) -> StatusEndpoint:
    try:
        return status_endpoint_from_env(environ)
    except ConfigurationError:
        return StatusEndpoint(
            base_url=(environ.get("API_ENDPOINT") or "").strip().rstrip("/"),
            token=(environ.get("API_TOKEN") or "").strip(),
        )


def _exit_code(exc: SystemExit) -> int:
    if exc.code is None:
        return 0
    if isinstance(exc.code, int):
        return exc.code
    return 1


def main(
    environ: Mapping[str, str] | None = None,
    *,
    reporter_factory: ReporterFactory = StatusReporter,
    orchestrator_factory: Callable[..., JobOrchestrator] = JobOrchestrator,
) -> int:
    env = os.environ if environ is None else environ

    try:
        config = config_from_env(env)
    except ConfigurationError as exc:
        reporter = reporter_factory(job_id=job_id_from_env(env), endpoint=_fallback_endpoint(env))
        try:
            return _fail(reporter, exc)
        finally:
            reporter.close()

    reporter = reporter_factory(job_id=config.job.job_id, endpoint=config.status)
    install_signal_handlers()
    try:
        return orchestrator_factory(config, reporter=reporter).run()
    except SystemExit as stop:
        return _exit_code(stop)
    except JobTerminated as exc:
        # Raised outside the stage loop, e.g. while scratch is being cleaned.
        logger.warning("job.terminated outside a stage: %s", exc)
        return _fail(reporter, exc)
    finally:
        reporter.close()


def _fail(reporter: StatusSink, exc: ConfigurationError | JobTerminated) -> int:
    try:
        FailureHandler(reporter).fail(exc)
    except SystemExit as stop:
        return _exit_code(stop)
    return exc.exit_code


def run() -> None:
    configure_logging()
    sys.exit(main())


__all__ = ["configure_logging", "install_signal_handlers", "main", "run"]
