import argparse
import logging
import sys

from . import __version__
from .errors import FatalError
from .logs import prune_old_logs, setup_logging

# cli.py - Command line entry points for the operator commands

logger = logging.getLogger(__name__)


def _execute(command: str, action, per_run: bool = False) -> int:
    """Runs action with logging configured and maps the outcome to an exit status."""
    log_file = setup_logging(command, per_run=per_run)
    if per_run:
        prune_old_logs(command, log_file.parent)
    logger.info(f"--- {command} started (log: {log_file}) ---")
    try:
        ok = action()
    except FatalError as e:
        logger.error(f"{command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info(f"{command} stopped by user (KeyboardInterrupt). Exiting gracefully.")
        return 130
    if ok is False:
        logger.error(f"{command} finished with errors.")
        return 1
    logger.info(f"--- {command} finished ---")
    return 0


def add_podcast_arguments(parser):
    parser.add_argument("--show", action="append", dest="shows", metavar="URL",
                        help="Show URL to download (repeatable, replaces PODCAST_SHOW_URLS).")
    parser.add_argument("--limit", type=int, help="Maximum episodes per show.")
    parser.add_argument("--no-transcode", action="store_true", help="Do not transcode downloaded episodes.")
    parser.set_defaults(handler=run_podcast)


def run_podcast(args) -> int:
    from .podcast import default_job, refresh_and_run

    job = default_job()
    if args.shows:
        job.show_urls = args.shows
    if args.limit is not None:
        job.episode_cap = args.limit
    if args.no_transcode:
        job.transcode = False
    return _execute("podcast", lambda: refresh_and_run(job).ok, per_run=True)


def add_update_arguments(parser):
    parser.add_argument("--force", action="store_true", help="Reinstall even if the latest release is installed.")
    parser.set_defaults(handler=run_update)


def run_update(args) -> int:
    from .updater import update

    return _execute("update", lambda: update(force=args.force))


def add_castkeeper_arguments(parser):
    parser.add_argument("--once", action="store_true", help="Run a single discovery cycle and exit.")
    parser.set_defaults(handler=run_castkeeper)


def run_castkeeper(args) -> int:
    from .castkeeper import run_forever

    return _execute("castkeeper", lambda: run_forever(once=args.once))


def add_clouddrive_arguments(parser):
    parser.add_argument("--non-interactive", action="store_true",
                        help="Fail instead of prompting when no credential is stored.")
    parser.add_argument("--forget", action="store_true", help="Remove the stored credential and exit.")
    parser.set_defaults(handler=run_clouddrive)


def run_clouddrive(args) -> int:
    from .clouddrive import install_and_mount
    from .credentials import CredentialStore

    def forget():
        if not CredentialStore().forget():
            logger.info("No stored credential to remove.")
        return True

    if args.forget:
        return _execute("clouddrive", forget)
    return _execute("clouddrive", lambda: install_and_mount(interactive=not args.non_interactive))


def add_iis_account_arguments(parser):
    parser.add_argument("--account", help="Local account name (default IIS_ACCOUNT_NAME).")
    parser.add_argument("--service", help="Service to keep running (default IIS_SERVICE_NAME).")
    parser.add_argument("--assign-account", action="store_true",
                        help="Also make the service run as the provisioned account.")
    parser.set_defaults(handler=run_iis_account)


def run_iis_account(args) -> int:
    from .config import IIS_ACCOUNT_NAME, IIS_SERVICE_NAME
    from .iisaccount import provision

    def action():
        summary = provision(
            account=args.account or IIS_ACCOUNT_NAME,
            service=args.service or IIS_SERVICE_NAME,
            assign_account=args.assign_account,
        )
        logger.info(f"Provisioning summary: {summary}")
        return True

    return _execute("iis-account", action)


COMMANDS = {
    "podcast": ("Refresh the podcast downloader containers and run one pass.", add_podcast_arguments),
    "update": ("Install the latest download manager release.", add_update_arguments),
    "castkeeper": ("Keep the casting helper running based on service discovery.", add_castkeeper_arguments),
    "clouddrive": ("Install, log in to and mount the cloud drive.", add_clouddrive_arguments),
    "iis-account": ("Provision the local IIS service account.", add_iis_account_arguments),
}


def _single(command):
    def entry(argv=None) -> int:
        description, add_arguments = COMMANDS[command]
        parser = argparse.ArgumentParser(prog=f"ops-{command}", description=description)
        add_arguments(parser)
        args = parser.parse_args(argv)
        return args.handler(args)
    entry.__name__ = f"{command.replace('-', '_')}_main"
    return entry


podcast_main = _single("podcast")
update_main = _single("update")
castkeeper_main = _single("castkeeper")
clouddrive_main = _single("clouddrive")
iis_account_main = _single("iis-account")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="opsutility", description="Operator commands for this workstation.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, (description, add_arguments) in COMMANDS.items():
        add_arguments(subparsers.add_parser(name, help=description, description=description))
    args = parser.parse_args(argv)
    return args.handler(args)


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
