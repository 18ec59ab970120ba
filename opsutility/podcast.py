import logging
import time
from typing import List

from .config import (
    DOCKER_EXE, DOCKER_GUI_PROCESS, GUI_KILL_DELAY, PODCAST_CONFIG_PATH, PODCAST_EPISODE_CAP,
    PODCAST_IMAGES, PODCAST_LOG_LEVEL, PODCAST_OUTPUT_PATH, PODCAST_SHOW_URLS, PODCAST_TRANSCODE,
    PODCAST_WRITE_FEED,
)
from .errors import FatalError
from .models import PodcastJob, ToolResult
from .runner import kill_processes, run_tool

# podcast.py - Refresh the podcast downloader images and run one download pass

logger = logging.getLogger(__name__)

CONTAINER_CONFIG_DIR = "/config"
CONTAINER_OUTPUT_DIR = "/output"


def default_job() -> PodcastJob:
    return PodcastJob(
        config_path=PODCAST_CONFIG_PATH,
        output_path=PODCAST_OUTPUT_PATH,
        log_level=PODCAST_LOG_LEVEL,
        transcode=PODCAST_TRANSCODE,
        write_feed=PODCAST_WRITE_FEED,
        episode_cap=PODCAST_EPISODE_CAP,
        show_urls=PODCAST_SHOW_URLS,
    )


def build_run_args(job: PodcastJob, image: str) -> List[str]:
    """
    Builds the docker run argument list for a single synchronous download pass.
    The host config and output directories are mounted at fixed container paths.
    """
    args = [
        DOCKER_EXE, "run", "--rm",
        "-v", f"{job.config_path}:{CONTAINER_CONFIG_DIR}",
        "-v", f"{job.output_path}:{CONTAINER_OUTPUT_DIR}",
        image,
        "--config", CONTAINER_CONFIG_DIR,
        "--log-level", job.log_level,
    ]
    if job.transcode:
        args.append("--transcode")
    args += ["--output", CONTAINER_OUTPUT_DIR]
    if job.write_feed:
        args.append("--write-feed")
    args += ["--limit", str(job.episode_cap)]
    args += list(job.show_urls)
    return args


def stop_all_containers() -> int:
    listing = run_tool([DOCKER_EXE, "ps", "-q"])
    container_ids = listing.stdout.split()
    if not container_ids:
        logger.info("No running containers to stop.")
        return 0
    result = run_tool([DOCKER_EXE, "stop", *container_ids])
    logger.info(f"Stopped {len(container_ids)} container(s): {result.outcome.value}")
    return len(container_ids)


def prune_containers() -> ToolResult:
    result = run_tool([DOCKER_EXE, "container", "prune", "-f"])
    logger.info(f"Container prune: {result.outcome.value}")
    return result


def pull_images(images: List[str]) -> List[ToolResult]:
    results = []
    for image in images:
        result = run_tool([DOCKER_EXE, "pull", image])
        if result.ok:
            logger.info(f"Pulled {image}")
        else:
            logger.error(f"Pull of {image} failed: {(result.stderr or result.stdout).strip()}")
        results.append(result)
    return results


def refresh_and_run(job: PodcastJob, images: List[str] = None, gui_kill_delay: float = GUI_KILL_DELAY,
                    sleep=time.sleep) -> ToolResult:
    """
    Stops and prunes containers, pulls the fixed image tags, runs one download
    pass with the first tag, prunes again and finally closes the container
    desktop GUI after a fixed delay.
    Pull and run failures are logged and the cleanup steps still run.
    """
    images = list(images or PODCAST_IMAGES)
    if not images:
        raise FatalError("No podcast images configured")
    if not job.show_urls:
        raise FatalError("No show URLs configured (PODCAST_SHOW_URLS)")

    stop_all_containers()
    prune_containers()
    pull_images(images)

    run_args = build_run_args(job, images[0])
    logger.info(f"Running {images[0]} for {len(job.show_urls)} show(s)")
    run_result = run_tool(run_args)
    for line in run_result.stdout.splitlines():
        logger.info(f"[container] {line}")
    if run_result.ok:
        logger.info("Download pass finished.")
    else:
        logger.error(f"Download pass failed: {run_result.summary()} {run_result.stderr.strip()}")

    prune_containers()

    logger.info(f"Closing {DOCKER_GUI_PROCESS} in {gui_kill_delay:g} seconds...")
    sleep(gui_kill_delay)
    kill_processes(DOCKER_GUI_PROCESS)
    return run_result
