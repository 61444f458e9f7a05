#!/usr/bin/env python3
"""
condor-launcher launches jobs on an HTCondor cluster.

Connects to the AMQP "jobs" exchange and waits for messages sent with the
"jobs.launches" key. Each request is turned into an iplant.cmd, config, job
and irods-config file under <condor.log_path>/<user>/<uuid> and handed to
condor_submit. Stop requests arrive on "jobs.stops.*", and held jobs are
removed every 30 seconds.

This calls condor_submit directly, so it has to run on a submit node rather
than inside a container.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import yaml
from aio_pika.exceptions import AMQPConnectionError
from pydantic import ValidationError

from condor_launcher.backend import CondorLauncherBackend
from condor_launcher.services.config_service import LauncherConfig, load_config
from condor_launcher.services.held_job_service import HeldJobReaper
from condor_launcher.services.messaging_service import (
    LAUNCHES_KEY,
    LAUNCHES_QUEUE,
    STOPS_KEY,
    STOPS_QUEUE,
    MessagingService,
)

APP_NAME = "condor-launcher"
APP_VERSION = "1.0.0"

logger = logging.getLogger(APP_NAME)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Launches jobs on an HTCondor cluster")
    parser.add_argument("--config", type=str, default="", help="Path to the config file. Required.")
    parser.add_argument("--version", action="store_true", help="Print the version information")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args(argv)
    if not args.version and not args.config:
        parser.error("--config must be set.")
    return args


def init_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


async def run(config: LauncherConfig) -> None:
    messaging = MessagingService(config.amqp.uri)
    await messaging.connect()

    backend = CondorLauncherBackend(config, publisher=messaging)
    reaper = HeldJobReaper(backend.condor_service, publisher=messaging)
    reaper.start()
    logger.info("Started up the held state ticker")

    try:
        await asyncio.gather(
            messaging.consume(LAUNCHES_QUEUE, LAUNCHES_KEY, backend.handle_launch_message),
            messaging.consume(STOPS_QUEUE, STOPS_KEY, backend.handle_stop_message),
        )
    finally:
        await reaper.stop()
        await messaging.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    init_logging(args.log_level)

    if args.version:
        print(f"{APP_NAME} {APP_VERSION}")
        return 0

    try:
        config = load_config(args.config)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        logger.error("Could not load configuration from %s: %s", args.config, e)
        return 1
    logger.info("Done reading config.")

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Shutting down")
    except (AMQPConnectionError, OSError) as e:
        logger.error("Could not connect to the message broker: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
