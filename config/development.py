from config.config import *  # noqa: F401,F403
from config.config import env_flag

DEBUG = True
LOG_LEVEL = "DEBUG" if env_flag("VERBOSE") else LOG_LEVEL  # noqa: F405

# If enabled, app will apply schema.sql on startup (idempotent: CREATE IF NOT EXISTS)
AUTO_INIT_DB = env_flag("AUTO_INIT_DB", "1")
