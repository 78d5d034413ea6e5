#!/usr/bin/env python3
"""Run the admin API and a worker pool side by side until one of them exits or Ctrl+C."""

import socket
import subprocess
import sys
import time

import structlog
import typer

from payment_queue.config import settings
from payment_queue.main import configure_logging

logger = structlog.get_logger()


def start(name, *args):
    """Start a ``payment-queue`` sub-command in its own process."""
    cmd = [sys.executable, "-m", "payment_queue.main", *args]
    logger.info("Starting component", component=name, command=" ".join(cmd))
    return subprocess.Popen(cmd)


def wait_for_api(process, timeout: float) -> bool:
    """Block until the API accepts connections, it exits, or ``timeout`` passes."""
    host = "127.0.0.1" if settings.api_host in ("0.0.0.0", "") else settings.api_host
    deadline = time.time() + timeout
    while time.time() < deadline:
        if process.poll() is not None:
            return False
        try:
            with socket.create_connection((host, settings.api_port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.2)
    return False


def stop(processes):
    for name, process in processes:
        if process.poll() is not None:
            continue
        logger.info("Stopping component", component=name)
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("Force killing component", component=name)
            process.kill()


def main(
    pool_size: int = typer.Option(0, help="Workers to run (0 uses WORKER_POOL_SIZE)"),
    api_wait: float = typer.Option(10.0, help="Seconds to wait for the API port to open"),
):
    """Run the admin API and a worker pool together."""
    configure_logging(settings.log_level)
    processes = []

    try:
        api_process = start("api", "api")
        processes.append(("api", api_process))
        if not wait_for_api(api_process, api_wait):
            logger.error("Admin API did not come up", host=settings.api_host, port=settings.api_port)
            raise typer.Exit(code=1)
        logger.info("Admin API listening", url=f"http://{settings.api_host}:{settings.api_port}")

        worker_args = ["worker"]
        if pool_size:
            worker_args += ["--pool-size", str(pool_size)]
        processes.append(("worker", start("worker", *worker_args)))

        logger.info("All components started. Press Ctrl+C to stop.",
                    pool_size=pool_size or settings.worker_pool_size)

        while True:
            time.sleep(1)
            for name, process in processes:
                if process.poll() is not None:
                    logger.error("Component exited", component=name, returncode=process.returncode)
                    raise typer.Exit(code=process.returncode or 1)

    except KeyboardInterrupt:
        logger.info("Shutting down all components...")
    finally:
        stop(processes)
        logger.info("All components stopped")


if __name__ == "__main__":
    typer.run(main)
