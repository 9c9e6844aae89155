import logging
from typing import Any, Dict, Optional
from contextvars import ContextVar
from pythonjsonlogger import jsonlogger

# Correlation id of the current request, and the actor performing a mutation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
actor_id_var: ContextVar[Optional[int]] = ContextVar("actor_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)

        req_id = request_id_var.get()
        if req_id:
            log_record["request_id"] = req_id

        actor_id = actor_id_var.get()
        if actor_id is not None:
            log_record["actor_id"] = actor_id

        if not log_record.get("timestamp"):
            from datetime import datetime, timezone
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        if log_record.get("level"):
            log_record["level"] = log_record["level"].upper()
        else:
            log_record["level"] = record.levelname


class bind_actor:
    """Context manager that tags every log line emitted inside it with the acting user."""

    def __init__(self, actor_id: Optional[int]):
        self.actor_id = actor_id
        self._token = None

    def __enter__(self):
        self._token = actor_id_var.set(self.actor_id)
        return self

    def __exit__(self, *exc):
        actor_id_var.reset(self._token)
        return False


def setup_logging(level: int = logging.INFO):
    logger = logging.getLogger()
    if any(isinstance(h.formatter, CustomJsonFormatter) for h in logger.handlers):
        return
    log_handler = logging.StreamHandler()
    formatter = CustomJsonFormatter("%(timestamp) %(level) %(name) %(message)")
    log_handler.setFormatter(formatter)
    logger.addHandler(log_handler)
    logger.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
