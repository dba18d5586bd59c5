"""告警 Sink"""

from .base import AlertSink, ConsoleSink, FileSink, MultiSink, RetryingSink
from .webhook import WebhookSink, build_feishu_card, build_slack_payload

__all__ = [
    "AlertSink",
    "RetryingSink",
    "ConsoleSink",
    "FileSink",
    "MultiSink",
    "WebhookSink",
    "build_feishu_card",
    "build_slack_payload",
]
