"""
Gunicorn config.

when_ready runs the smoke test against localhost once the server is
accepting connections.  The deploy check skips the live search, which
would spend Google/Yelp quota on every deploy.  It fails when /healthz
is not 200 (GOOGLE_MAPS_API_KEY missing) and warns when /api/search
does not reject a bad sort key with a JSON 400.  Set SMOKE_ON_DEPLOY=0
to disable it.

Search requests block on provider fan-out, so workers run threads
rather than relying on more processes.
"""

import logging
import os
import threading
import time

workers = int(os.environ.get("WEB_CONCURRENCY", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "60"))

SMOKE_GRACE_SECONDS = 2


def _deploy_smoke(base_url: str, logger: logging.Logger):
    time.sleep(SMOKE_GRACE_SECONDS)  # let workers finish forking
    try:
        from smoke_test import run_tests
        logger.info("Post-deploy smoke test starting against %s (search skipped)", base_url)
        if run_tests(base_url, run_search=False):
            logger.info("Post-deploy smoke test PASSED")
        else:
            logger.error("Post-deploy smoke test FAILED")
    except Exception:
        logger.exception("Post-deploy smoke test crashed")


def when_ready(server):
    """Start the deploy smoke test in a background thread."""
    logger = logging.getLogger("gunicorn.error")
    if os.environ.get("SMOKE_ON_DEPLOY", "1") == "0":
        logger.info("Post-deploy smoke test disabled (SMOKE_ON_DEPLOY=0)")
        return
    base_url = f"http://127.0.0.1:{os.environ.get('PORT', '8000')}"
    threading.Thread(target=_deploy_smoke, args=(base_url, logger), daemon=True).start()
