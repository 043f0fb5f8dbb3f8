"""Roll back a batch upload from the command line.

Usage: python rollback_batch.py <batch_id> [--force-reset]
"""

import argparse
import sys

from app.backend.src.core.errors import BatchError
from app.backend.src.core.logging import configure_logging
from app.backend.src.db import session_scope
from app.backend.src.services.batch_repository import SqlAlchemyBatchRepository
from app.backend.src.services.batch_rollback import force_reset_batch, rollback_batch


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Delete the cases and contributions a batch created.")
    parser.add_argument("batch_id", type=int)
    parser.add_argument(
        "--force-reset",
        action="store_true",
        help="release a batch stuck in processing before rolling it back",
    )
    args = parser.parse_args(argv)
    configure_logging()

    try:
        with session_scope() as session:
            repository = SqlAlchemyBatchRepository(session)
            if args.force_reset:
                force_reset_batch(repository, args.batch_id)
                print(f"⚠️  Batch {args.batch_id} force-reset")
            result = rollback_batch(repository, args.batch_id)
    except BatchError as exc:
        print(f"❌ {exc.message}", file=sys.stderr)
        return 1

    print(f"✅ {result.message}")
    print(f"Items reset to pending: {result.items_reset}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
