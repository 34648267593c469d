"""日志配置"""

import logging
import os
import sys
from typing import Optional

RESULT = 35

THIRD_PARTY_LOGGERS = ["httpx", "httpcore", "openai", "playwright", "asyncio", "urllib3"]


def setup_logging(log_level: Optional[str] = None, stream=None, force_setup: bool = False) -> logging.Logger:
    """
    配置 webui_agent 日志。

    log_level 取 debug / info / result，缺省读取 WEBUI_AGENT_LOGGING_LEVEL；
    result 级别只输出最终结果和错误。
    """
    logging.addLevelName(RESULT, "RESULT")
    log_type = (log_level or os.getenv("WEBUI_AGENT_LOGGING_LEVEL", "info")).lower()

    logger = logging.getLogger("webui_agent")
    if logger.handlers and not force_setup:
        return logger
    logger.handlers = []

    console = logging.StreamHandler(stream or sys.stdout)
    if log_type == "result":
        console.setFormatter(logging.Formatter("%(message)s"))
        logger.setLevel(RESULT)
    else:
        console.setFormatter(logging.Formatter("%(levelname)-8s [%(name)s] %(message)s"))
        logger.setLevel(logging.DEBUG if log_type == "debug" else logging.INFO)

    logger.addHandler(console)
    logger.propagate = False

    for name in THIRD_PARTY_LOGGERS:
        third_party = logging.getLogger(name)
        third_party.setLevel(logging.ERROR)
        third_party.propagate = False
    return logger
