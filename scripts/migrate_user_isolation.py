"""
Run the user-isolation migration against the configured Firestore project.

Examples:
    python scripts/migrate_user_isolation.py analyze
    python scripts/migrate_user_isolation.py run
    python scripts/migrate_user_isolation.py user dev-123 --delete-source
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from weddingpix.config import get_settings
from weddingpix.dependencies import get_migration_service, get_user_migration_service
from weddingpix.runner import MigrationRunner, succeeded

logger = logging.getLogger(__name__)


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Move global gallery collections into users/{uid}/...")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("analyze", help="Report global collections that still hold data")
    sub.add_parser("backup", help="Write every global collection to object storage as JSON")
    sub.add_parser("migrate", help="Move all global documents into per-user collections")
    sub.add_parser("storage", help="Move galleries/{uid}/... objects to users/{uid}/...")
    sub.add_parser("validate", help="Check that the global collections are empty")
    sub.add_parser("run", help="Run the full ordered migration sequence")
    user = sub.add_parser("user", help="Copy one user's legacy documents")
    user.add_argument("user_id")
    user.add_argument("--delete-source", action="store_true", help="Delete the global copies")
    all_users = sub.add_parser("all-users", help="Copy legacy documents for every candidate user")
    all_users.add_argument("--delete-source", action="store_true", help="Delete the global copies")
    status = sub.add_parser("status", help="Show whether a user still needs migrating")
    status.add_argument("user_id")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    logger.info("Running migration command %s", args.command)
    service = get_migration_service()
    if args.command == "analyze":
        _print(service.analyze_security_issues().as_dict())
        return 0
    if args.command in ("backup", "migrate", "storage", "validate"):
        action = {
            "backup": service.backup_global_collections,
            "migrate": service.migrate_all_collections,
            "storage": service.migrate_storage_to_user_isolated,
            "validate": service.validate_data_isolation,
        }[args.command]
        result = action()
        _print(result.as_dict())
        return 0 if result.success else 1
    if args.command == "run":
        runner = MigrationRunner(
            service, retry_delay_seconds=get_settings().validation_retry_delay_seconds
        )
        steps = runner.run()
        _print([step.as_dict() for step in steps])
        return 0 if succeeded(steps) else 1

    users = get_user_migration_service()
    if args.command == "user":
        stats = users.migrate_user_data(args.user_id, delete_source=args.delete_source)
        _print(stats.as_dict())
        return 0 if not stats.errors else 1
    if args.command == "all-users":
        results = users.migrate_all_users(delete_source=args.delete_source)
        _print([stats.as_dict() for stats in results])
        return 0 if not any(stats.errors for stats in results) else 1
    _print(users.check_migration_status(args.user_id).as_dict())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
