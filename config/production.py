import os

from config.config import *  # noqa: F401,F403
from config.config import env_flag

DEBUG = False
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

AUTO_INIT_DB = env_flag("AUTO_INIT_DB", "0")
