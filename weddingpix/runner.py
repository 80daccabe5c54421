"""
Ordered migration run: analysis, backup, isolation, rules check, storage
isolation and validation. A failing critical step stops the run; nothing is
rolled back.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Optional

from weddingpix.migration import DataMigrationService, MigrationResult

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class MigrationStep:
    id: str
    title: str
    critical: bool = False
    status: StepStatus = StepStatus.PENDING
    migrated_items: int = 0
    details: str = ""
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


STEP_DEFINITIONS = (
    ("security-analysis", "Security analysis", True),
    ("backup-creation", "Backup", False),
    ("user-isolation", "User isolation", True),
    ("security-rules", "Security rules", True),
    ("cleanup", "Storage isolation", False),
    ("validation", "Validation", True),
)


def build_steps() -> list[MigrationStep]:
    return [MigrationStep(id=step_id, title=title, critical=critical) for step_id, title, critical in STEP_DEFINITIONS]


def succeeded(steps: list[MigrationStep]) -> bool:
    return all(step.status == StepStatus.COMPLETED for step in steps)


class MigrationRunner:
    def __init__(
        self,
        service: DataMigrationService,
        *,
        retry_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.retry_delay_seconds = retry_delay_seconds
        self.sleep = sleep

    def _security_analysis(self) -> MigrationResult:
        analysis = self.service.analyze_security_issues()
        return MigrationResult(
            success=not analysis.errors,
            migrated_items=analysis.unsecured_data,
            errors=list(analysis.errors),
            warnings=list(analysis.risky_operations),
            details=(
                f"Found {len(analysis.global_collections)} unsecured collections"
                f" with {analysis.unsecured_data} items"
            ),
        )

    def _validation(self) -> MigrationResult:
        result = self.service.validate_data_isolation()
        if result.success:
            return result
        # Collection-group reads can lag right after large batches.
        self.sleep(self.retry_delay_seconds)
        retry = self.service.validate_data_isolation()
        if retry.success or retry.migrated_items > 0:
            return retry
        return result

    def _execute(self, step_id: str) -> MigrationResult:
        handlers = {
            "security-analysis": self._security_analysis,
            "backup-creation": self.service.backup_global_collections,
            "user-isolation": self.service.migrate_all_collections,
            "security-rules": self.service.check_security_rules,
            "cleanup": self.service.migrate_storage_to_user_isolated,
            "validation": self._validation,
        }
        return handlers[step_id]()

    def run(
        self, on_step: Optional[Callable[[list[MigrationStep]], None]] = None
    ) -> list[MigrationStep]:
        """
        Run every step in order. ``on_step`` is called with the full step list
        whenever a step changes state, so callers can persist progress.
        """
        steps = build_steps()
        for step in steps:
            step.status = StepStatus.RUNNING
            if on_step:
                on_step(steps)
            logger.info("Migration step %s started", step.id)
            try:
                result = self._execute(step.id)
            except Exception as exc:
                logger.exception("Migration step %s raised", step.id)
                result = MigrationResult(
                    errors=[str(exc)], details="Migration step failed with error"
                )
            step.status = StepStatus.COMPLETED if result.success else StepStatus.ERROR
            step.migrated_items = result.migrated_items
            step.details = result.details
            step.errors = list(result.errors)
            step.warnings = list(result.warnings)
            if on_step:
                on_step(steps)
            logger.info("Migration step %s finished: %s", step.id, step.status.value)
            if step.status == StepStatus.ERROR and step.critical:
                logger.error("Critical step %s failed: %s", step.id, step.errors)
                break
        return steps
