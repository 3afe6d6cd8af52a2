import csv
import logging
import sys

from errors import TransactionCacheError
from payments_engine import PaymentsEngine
from settings import get_settings

logger = logging.getLogger(__name__)

EXIT_USAGE = 1
EXIT_CACHE_FAILURE = 2


def write_accounts(accounts, stream) -> None:
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(["client", "available", "held", "total", "locked"])
    for client_id in sorted(accounts):
        account = accounts[client_id]
        writer.writerow([client_id, account.available, account.held, account.total, str(account.locked).lower()])


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    if len(argv) != 1:
        print("Usage: payments-engine <input.csv>", file=sys.stderr)
        return EXIT_USAGE

    engine = PaymentsEngine(settings)
    try:
        accounts = engine.process_file(argv[0])
    except OSError as e:
        print(f"Could not read {argv[0]}: {e}", file=sys.stderr)
        return EXIT_USAGE
    except TransactionCacheError as e:
        logger.error(f"Aborting, transaction cache failed: {e}")
        return EXIT_CACHE_FAILURE

    write_accounts(accounts, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
