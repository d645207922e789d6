import multiprocessing
import os

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
workers = multiprocessing.cpu_count() * 2 + 1

wsgi_app = "podsync.wsgi:application"

# The maximum number of requests a worker will process before restarting.
max_requests = 1000

log_dir = os.getenv("LOGGING_DIR_GUNICORN", "/var/log/gunicorn/")
errorlog = log_dir + "error.log"
accesslog = log_dir + "access.log"
loglevel = "info"

# hubs give up on verifications that are not answered quickly; the
# callback endpoint never fetches feeds while verifying
timeout = 30
graceful_timeout = 60
