"""
Local startup script for the API, the Celery worker and Celery beat.
Runs each service in its own process and stops all of them if one dies.
"""

import multiprocessing
import subprocess
import sys
import time
import signal
from pathlib import Path

# Add the parent directory to Python path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.utils.logging import get_logger

logger = get_logger()

PROJECT_ROOT = str(Path(__file__).parent.parent)

SERVICES = {
    "FastAPI": [
        "-m",
        "uvicorn",
        "app.main:app",
        "--host",
        "0.0.0.0",
        "--port",
        "8000",
        "--reload",
    ],
    "CeleryWorker": [
        "-m",
        "celery",
        "-A",
        "app.celery",
        "worker",
        "--loglevel=info",
        "--pool=solo",
    ],
    "CeleryBeat": [
        "-m",
        "celery",
        "-A",
        "app.celery",
        "beat",
        "--loglevel=info",
    ],
}


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def run_service(name: str):
    """Run one service until it exits"""
    try:
        logger.info(f"Starting {name} process")
        Path(PROJECT_ROOT, "tmp").mkdir(exist_ok=True)
        subprocess.run([sys.executable, *SERVICES[name]], check=True, cwd=PROJECT_ROOT)
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} process failed with return code {e.returncode}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"{name} process interrupted by user")


def check_redis_connection() -> bool:
    """Check if Redis server is accessible"""
    from redis.exceptions import RedisError
    from app.utils.run_lock import get_redis_client

    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
        return True
    except RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        logger.error("Please ensure Redis server is running")
        return False


def monitor_processes(processes):
    """Monitor running processes and handle failures"""
    logger.info("Starting process monitoring")

    while True:
        for process in processes:
            if not process.is_alive():
                logger.error(
                    f"{process.name} process died unexpectedly with exit code: {process.exitcode}"
                )
                terminate_processes(processes)
                sys.exit(1)

        time.sleep(1)


def terminate_processes(processes):
    """Gracefully terminate all processes"""
    logger.info("Initiating graceful shutdown of all services")

    for process in processes:
        if process.is_alive():
            logger.info(f"Terminating {process.name} process")
            process.terminate()

    for process in processes:
        process.join(timeout=10)
        if process.is_alive():
            logger.warning(f"{process.name} did not terminate gracefully, force killing")
            process.kill()
            process.join()
        else:
            logger.info(f"{process.name} terminated successfully")


def main():
    """Start and supervise the API, worker and beat processes"""
    multiprocessing.freeze_support()
    setup_signal_handlers()

    logger.info("=" * 60)
    logger.info("Starting Vibe Check services (FastAPI + Celery worker + beat)")
    logger.info("=" * 60)

    if not check_redis_connection():
        logger.error("Cannot start services without Redis connection")
        sys.exit(1)

    processes = []

    try:
        for name in SERVICES:
            process = multiprocessing.Process(
                target=run_service, args=(name,), name=name, daemon=False
            )
            process.start()
            processes.append(process)
            # Let the API bind its port before the workers start logging
            time.sleep(1)

        logger.info("All services started")
        logger.info("FastAPI documentation: http://localhost:8000/docs")
        logger.info("-" * 60)

        monitor_processes(processes)

    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    finally:
        terminate_processes(processes)
        logger.info("All services stopped successfully")


if __name__ == "__main__":
    main()
