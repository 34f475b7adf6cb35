"""
Notification Background Worker Runner
Run this as a separate process: python run_notification_worker.py
Starts one worker thread per notification queue
"""

import logging
import signal
import sys
import threading
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from carehealth.config import APPOINTMENT_QUEUE_KEY, LAB_RESULT_QUEUE_KEY, PHARMACY_QUEUE_KEY
from carehealth.jobs import JobQueue, RedisQueueBackend
from carehealth.redis_client import get_redis_client
from carehealth.services.notification_service import EmailNotifier
from carehealth.workers.notification_worker import NotificationWorker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

QUEUES = [APPOINTMENT_QUEUE_KEY, LAB_RESULT_QUEUE_KEY, PHARMACY_QUEUE_KEY]


def run_notification_workers():
    queue = JobQueue(RedisQueueBackend(get_redis_client()))
    notifier = EmailNotifier()
    workers = [NotificationWorker(queue, notifier, queue_name) for queue_name in QUEUES]

    def shutdown(signum, _frame):
        logger.info(f"🛑 Received signal {signum}, stopping notification workers...")
        for worker in workers:
            worker.stop()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    threads = [
        threading.Thread(target=worker.run, name=f"notify:{worker.queue_name}", daemon=True)
        for worker in workers
    ]
    for thread in threads:
        thread.start()

    # Join with a timeout so the main thread keeps receiving signals
    while any(thread.is_alive() for thread in threads):
        for thread in threads:
            thread.join(timeout=1.0)


if __name__ == "__main__":
    logger.info("🚀 Starting Notification Background Workers...")
    try:
        run_notification_workers()
        logger.info("👋 Notification workers stopped")
    except KeyboardInterrupt:
        logger.info("👋 Notification workers stopped by user")
    except Exception as e:
        logger.error(f"❌ Notification worker crashed: {e}")
        sys.exit(1)
