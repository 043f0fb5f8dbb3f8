"""Celery application factory."""

from __future__ import annotations

import ssl
from pathlib import Path
from typing import Any

import structlog
from celery import Celery, signals
from kombu import Queue

from app.backend.src.core.config import get_settings

LOGGER = structlog.get_logger(__name__)
PROJECT_ROOT = Path(__file__).resolve().parents[1]

settings = get_settings()


def _resolve_ca_cert_path(path: str | None) -> str | None:
    """Resolve the configured CA certificate path to an absolute path.

    redis-py needs an absolute path for ``ssl_ca_certs``; project-relative
    values are resolved against the repository root. A missing file falls
    back to the default trust store.
    """

    if not path:
        return None

    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate

    if candidate.is_file():
        return str(candidate)

    LOGGER.warning(
        "redis_ca_certificate_missing",
        configured_path=path,
        resolved_path=str(candidate),
    )
    return None


def _build_ssl_options() -> dict[str, Any]:
    """Return SSL options for Redis connections."""

    options: dict[str, Any] = {"ssl_cert_reqs": ssl.CERT_REQUIRED}
    resolved_cert = _resolve_ca_cert_path(settings.redis_ca_cert_path)
    if resolved_cert:
        options["ssl_ca_certs"] = resolved_cert
    return options


def _verify_celery_connectivity() -> None:
    """Fail fast when the broker is unreachable instead of idling."""

    try:
        with celery.connection_for_read() as connection:
            connection.ensure_connection(max_retries=1)
    except Exception as exc:  # pragma: no cover - requires broker connectivity
        LOGGER.error(
            "celery_broker_unavailable",
            broker=settings.broker_url,
            error=str(exc),
        )
        raise


celery = Celery(
    "charity_batches",
    broker=settings.broker_url,
    backend=settings.result_backend,
)
celery.conf.update(include=["tasks.batches"])

ssl_options = _build_ssl_options()

celery_conf: dict[str, object] = {
    "task_default_queue": "batches",
    "task_queues": (Queue("batches"),),
    "task_routes": {"tasks.batches.*": {"queue": "batches"}},
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    # A batch run holds its claim for its whole duration; never prefetch more.
    "worker_prefetch_multiplier": 1,
    "task_acks_late": False,
    "broker_transport_options": {"global_keyprefix": "charity-batches-broker:"},
    "result_backend_transport_options": {"global_keyprefix": "charity-batches-result:"},
    "broker_connection_retry_on_startup": True,
}

if settings.broker_url.startswith("rediss://"):
    celery_conf["broker_use_ssl"] = ssl_options.copy()

if settings.result_backend.startswith("rediss://"):
    celery_conf["redis_backend_use_ssl"] = ssl_options.copy()

celery.conf.update(**celery_conf)

LOGGER.info(
    "celery_bootstrap_ready",
    broker=settings.broker_url,
    backend=settings.result_backend,
)

from . import batches  # noqa: F401,E402  # isort: skip


@signals.worker_ready.connect
def _log_worker_configuration(sender: Any | None = None, **_: Any) -> None:
    """Emit structured worker configuration details after startup."""

    app = sender.app if sender is not None else celery
    _verify_celery_connectivity()
    registered_tasks = sorted(
        task_name for task_name in app.tasks.keys() if task_name.startswith("tasks.")
    )
    LOGGER.info(
        "celery_worker_configuration",
        default_queue=app.conf.task_default_queue,
        registered_tasks=registered_tasks,
    )


@signals.task_postrun.connect
def _log_task_postrun(
    sender: Any | None = None,
    task_id: str | None = None,
    task: Any | None = None,
    retval: Any | None = None,
    state: str | None = None,
    **_: Any,
) -> None:
    """Emit completion information after a task finishes."""

    task_name = getattr(task, "name", None) or ""
    if task_name and not task_name.startswith("tasks."):
        return
    payload: dict[str, Any] = {"task_id": task_id, "task_name": task_name or None, "state": state}
    if state == "SUCCESS" and isinstance(retval, dict):
        payload["status"] = retval.get("status")
    LOGGER.info("celery_task_postrun", **payload)


__all__ = ["celery"]
