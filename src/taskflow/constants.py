APP_DIR_NAME = "taskflow-pm"
DATA_FILE_NAME = "taskflow-data.json"
CONFIG_DIR_NAME = ".taskflow"
CONFIG_FILE = "config.yaml"

ENV_DATA_FILE = "TASKFLOW_DATA_FILE"
ENV_LOG_LEVEL = "TASKFLOW_LOG_LEVEL"
ENV_CONFIG_FILE = "TASKFLOW_CONFIG"

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_COLOR = "#6366f1"

INBOX_ID = "inbox"
INBOX_NAME = "Inbox"
