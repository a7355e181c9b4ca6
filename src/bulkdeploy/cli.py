import argparse
import logging
import sys

from bulkdeploy.observability import configure_logging
from bulkdeploy.runner import run_deployment
from bulkdeploy.runtime.settings import load_settings
from bulkdeploy.spec import RunConfig

log = logging.getLogger("bulkdeploy.cli")


def _non_negative_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("A valid retry count must be passed to the program as argument.")
    if n < 0:
        raise argparse.ArgumentTypeError(f"Retry count must be >= 0, got {n}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulkdeploy",
        description="Export, import and publish solutions across one or more destination systems",
    )
    parser.add_argument(
        "-f", "--config", dest="configs", nargs="+", action="extend", required=True,
        help="Deployment file(s) (JSON or YAML); processed in order",
    )
    parser.add_argument("-c", "--connections", default=None, help="Connection file with default source/destination strings")
    parser.add_argument(
        "-r", "--retry", type=_non_negative_int, default=None, metavar="COUNT",
        help="Retry failed imports automatically up to COUNT times (default: ask interactively)",
    )
    parser.add_argument("-P", "--no-pause", action="store_true", help="Do not wait for a key press before exiting")
    return parser


def parse_run_config(argv) -> RunConfig:
    args = build_parser().parse_args(argv)
    return RunConfig(
        config_files=tuple(args.configs),
        connection_file=args.connections,
        auto_retry=args.retry is not None,
        retry_count=args.retry or 0,
        pause_on_exit=not args.no_pause,
    )


def main(argv=None) -> int:
    argv = list(argv if argv is not None else sys.argv[1:])
    pause = not any(a in ("-P", "--no-pause") for a in argv)

    try:
        try:
            run_config = parse_run_config(argv)
        except SystemExit as e:
            # --help exits cleanly; invalid arguments are a failed run
            if not e.code:
                pause = False
                raise
            return 1
        pause = run_config.pause_on_exit

        settings = load_settings()
        configure_logging(settings)

        log.info(f"Auto retry on error: {run_config.auto_retry}")
        log.info(f"Retry count: {run_config.retry_count}")
        log.info(f"Pause on exit: {run_config.pause_on_exit}")

        for config in run_config.config_files:
            log.info(f"Parsing config file {config} ...")
            result = run_deployment(config, run_config, settings=settings)
            log.info(f"Finished parsing config file {config}.")
            if result > 0:
                return result
        return 0
    except Exception:
        log.exception("Execution failed.")
        return 1
    finally:
        log.info("Execution ended.")
        if pause:
            print()
            try:
                input("Press Enter to exit ...")
            except EOFError:
                pass


if __name__ == "__main__":
    raise SystemExit(main())
