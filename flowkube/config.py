import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Value of the label stamped on every object flowkube creates
MANAGED_BY_LABEL = "managed-by-automation"
MANAGED_BY_VALUE = os.getenv("FLOWKUBE_MANAGED_BY", "flowkube")

ANNOTATION_PREFIX = "flowkube.io"

DEFAULT_NAMESPACE = "default"
DEFAULT_WAIT_TIMEOUT = int(os.getenv("FLOWKUBE_WAIT_TIMEOUT", "300"))
LOG_TIMEOUT = float(os.getenv("FLOWKUBE_LOG_TIMEOUT", "10"))
LOG_FOLLOW_TIMEOUT = float(os.getenv("FLOWKUBE_LOG_FOLLOW_TIMEOUT", "30"))
DEFAULT_TAIL_LINES = 1000

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
