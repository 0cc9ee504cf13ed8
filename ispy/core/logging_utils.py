# ispy/core/logging_utils.py
import logging
import json
import datetime as dt
from typing import Dict, Any, Optional, Set

# Attributes from LogRecord that are part of every record and never count as "extra" fields
LOG_RECORD_BUILTIN_ATTRS: Set[str] = {
    "args", "asctime", "created", "exc_info", "exc_text", "filename",
    "funcName", "levelname", "levelno", "lineno", "module", "msecs",
    "message", "msg", "name", "pathname", "process", "processName",
    "relativeCreated", "stack_info", "thread", "threadName", "taskName",
}


class JSONLogFormatter(logging.Formatter):
    """
    Renders a record as a single JSON object.

    `fmt_keys` maps output keys to LogRecord attribute names, e.g.
    {"level": "levelname", "logger": "name"}. Message and timestamp are always present,
    and anything passed via `extra=` is appended as-is.
    """

    def __init__(self, *, fmt_keys: Optional[Dict[str, str]] = None, datefmt: Optional[str] = None):
        super().__init__(datefmt=datefmt)
        self.fmt_keys = fmt_keys if fmt_keys is not None else {}

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self._prepare_log_dict(record), default=str)

    def _prepare_log_dict(self, record: logging.LogRecord) -> Dict[str, Any]:
        always_fields: Dict[str, Any] = {"message": record.getMessage()}
        if self.datefmt:
            always_fields["timestamp"] = self.formatTime(record, self.datefmt)
        else:  # ISO format in UTC
            always_fields["timestamp"] = dt.datetime.fromtimestamp(
                record.created, tz=dt.timezone.utc
            ).isoformat()

        if record.exc_info:
            always_fields["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            always_fields["stack_info"] = self.formatStack(record.stack_info)

        message_dict: Dict[str, Any] = {}
        for key, attr_name in self.fmt_keys.items():
            if attr_name in always_fields:
                message_dict[key] = always_fields[attr_name]
            else:
                val = getattr(record, attr_name, None)
                if val is not None:
                    message_dict[key] = val

        for key, value in always_fields.items():
            if key not in message_dict and key not in self.fmt_keys.values():
                message_dict[key] = value

        for key, val in record.__dict__.items():
            if key not in LOG_RECORD_BUILTIN_ATTRS and key not in message_dict and key not in self.fmt_keys.values():
                message_dict[key] = val

        return message_dict
