import hashlib
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from app.domain.messages import crash_alert_text
from app.domain.schemas import CrashLogIn
from app.infrastructure.repositories.admin_repository import AdminRepository

logger = logging.getLogger(__name__)

ALERT_THRESHOLDS = {10, 50, 100, 500, 1000}
MAX_MESSAGE_LENGTH = 500


def fallback_hash(error_message: str, device_model: str) -> str:
    return hashlib.md5(f"{device_model}|{error_message}".encode("utf-8")).hexdigest()


def should_alert(count: int, is_new: bool) -> bool:
    return is_new or count in ALERT_THRESHOLDS


@dataclass
class CrashReportResult:
    cluster_id: int
    count: int
    is_new: bool


class TelemetryService:
    """Clusters app crash reports by (hash, app type) and pages the operator sparingly."""

    def __init__(self, admin_repo: AdminRepository, operator_notifier):
        self.admin_repo = admin_repo
        self.operator = operator_notifier

    async def record(self, report: CrashLogIn) -> CrashReportResult:
        log = report.log or ""
        error_message = log.split("\n")[0][:MAX_MESSAGE_LENGTH]
        if isinstance(report.device, dict):
            device_model = report.device.get("model") or "Unknown"
            os_version = report.device.get("os") or "N/A"
            app_version = report.device.get("app_version") or "1.x"
        else:
            device_model = report.device or "Unknown"
            os_version = "N/A"
            app_version = "1.x"
        app_type = report.app_type or "CLIENT"
        log_hash = report.log_hash or fallback_hash(error_message, device_model)

        existing = await run_in_threadpool(self.admin_repo.find_crash, log_hash, app_type)
        if existing is not None:
            count = await run_in_threadpool(self.admin_repo.bump_crash, existing.id, report.userId)
            result = CrashReportResult(existing.id, count, False)
        else:
            try:
                crash = await run_in_threadpool(
                    self.admin_repo.insert_crash,
                    user_id=report.userId,
                    error_message=error_message,
                    error_stack=log,
                    device_model=device_model,
                    os_version=os_version,
                    app_version=app_version,
                    app_type=app_type,
                    log_hash=log_hash,
                )
                result = CrashReportResult(crash.id, 1, True)
            except IntegrityError:
                # Same crash reported concurrently; the other request created the cluster
                logger.info(f"[Telemetry] Cluster {log_hash}/{app_type} created concurrently, counting instead")
                existing = await run_in_threadpool(self.admin_repo.find_crash, log_hash, app_type)
                count = await run_in_threadpool(self.admin_repo.bump_crash, existing.id, report.userId)
                result = CrashReportResult(existing.id, count, False)

        logger.info(f"[Telemetry] {app_type} crash cluster {result.cluster_id}: count={result.count} new={result.is_new}")

        if should_alert(result.count, result.is_new):
            await self.operator.send_text(crash_alert_text(
                app_type=app_type,
                kind=report.type,
                error_message=error_message,
                device_model=device_model,
                os_version=os_version,
                app_version=app_version,
                count=result.count,
                is_new=result.is_new,
                log=log,
            ))
        return result
