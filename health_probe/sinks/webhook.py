"""
Webhook Sink

通过 httpx 将告警 POST 到 Webhook，支持三种 payload:
- json: 告警字典原样发送
- feishu: 飞书交互式卡片
- slack: Slack incoming webhook
"""

import logging
import threading
from typing import Any, Dict, Optional

import httpx

from ..models.exceptions import SinkDeliveryError
from ..models.result import Alert
from .base import RetryingSink

logger = logging.getLogger(__name__)

PAYLOAD_FORMATS = ("json", "feishu", "slack")


def build_feishu_card(alert: Alert, source: str = "Health-Probe") -> Dict[str, Any]:
    """
    构建飞书卡片 payload

    Returns:
        可直接发送给飞书 Webhook 的 JSON
    """
    fields = [
        ("探针", alert.probe_name),
        ("级别", alert.severity.name),
        ("类型", str(alert.kind)),
        ("时间", alert.formatted_timestamp),
    ]
    elements = [
        {"tag": "markdown", "content": alert.message},
        {
            "tag": "div",
            "fields": [
                {
                    "is_short": True,
                    "text": {"tag": "lark_md", "content": f"**{label}**\n{value}"},
                }
                for label, value in fields
            ],
        },
        {"tag": "hr"},
        {
            "tag": "note",
            "elements": [{"tag": "plain_text", "content": f"来自 {source}"}],
        },
    ]
    # CRITICAL 默认 @ 所有人
    if alert.severity.name == "CRITICAL":
        elements.insert(2, {"tag": "markdown", "content": "<at id=all></at>"})

    return {
        "msg_type": "interactive",
        "card": {
            "config": {"wide_screen_mode": True, "enable_forward": True},
            "header": {
                "template": alert.severity.color,
                "title": {"tag": "plain_text", "content": alert.title},
            },
            "elements": elements,
        },
    }


def build_slack_payload(alert: Alert) -> Dict[str, Any]:
    """构建 Slack attachment payload"""
    colors = {"INFO": "#0000FF", "WARNING": "#FFA500", "CRITICAL": "#FF0000"}
    return {
        "text": alert.title,
        "attachments": [
            {
                "color": colors.get(alert.severity.name, "#808080"),
                "text": alert.message,
                "fields": [
                    {"title": "Probe", "value": alert.probe_name, "short": True},
                    {"title": "Kind", "value": str(alert.kind), "short": True},
                ],
                "ts": int(alert.timestamp.timestamp()),
            }
        ],
    }


class WebhookSink(RetryingSink):
    """
    Webhook Sink

    httpx.Client 可以在多个线程间共享，首次使用时创建
    """

    def __init__(
        self,
        url: str,
        format: str = "json",
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        source: str = "Health-Probe",
        client: Optional[httpx.Client] = None,
        **kwargs,
    ):
        """
        Args:
            url: Webhook URL
            format: payload 格式（json / feishu / slack）
            timeout: HTTP 请求超时（秒）
            headers: 额外请求头
            source: 消息来源标识
            client: 已创建的 httpx.Client（测试时可注入 MockTransport）
            kwargs: 重试参数，见 RetryingSink
        """
        super().__init__(**kwargs)
        if not url:
            raise ValueError("Webhook url 不能为空")
        if format not in PAYLOAD_FORMATS:
            raise ValueError(f"不支持的 payload 格式: {format}（可选: {', '.join(PAYLOAD_FORMATS)}）")
        self.url = url
        self.format = format
        self.timeout = timeout
        self.headers = headers or {}
        self.source = source
        self._client = client
        self._client_lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        """获取 HTTP 客户端"""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def build_payload(self, alert: Alert) -> Dict[str, Any]:
        if self.format == "feishu":
            return build_feishu_card(alert, source=self.source)
        if self.format == "slack":
            return build_slack_payload(alert)
        return {"source": self.source, **alert.to_dict()}

    def send(self, alert: Alert) -> None:
        payload = self.build_payload(alert)

        try:
            response = self._get_client().post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json", **self.headers},
            )
        except httpx.TimeoutException as e:
            raise SinkDeliveryError(f"请求超时: {e}", original_error=e) from e
        except httpx.HTTPError as e:
            raise SinkDeliveryError(f"HTTP 错误: {e}", original_error=e) from e

        if not 200 <= response.status_code < 300:
            raise SinkDeliveryError(f"HTTP {response.status_code}")

        if self.format == "feishu":
            self._check_feishu_response(response)

        logger.debug(f"[Health-Probe] Webhook 投递成功: {alert.probe_name}")

    @staticmethod
    def _check_feishu_response(response: httpx.Response) -> None:
        """飞书即使出错也返回 200，需要检查 body 中的 code"""
        try:
            data = response.json()
        except ValueError as e:
            raise SinkDeliveryError(f"飞书返回非 JSON 响应: {response.text[:200]}", original_error=e) from e
        if not (data.get("code") == 0 or data.get("StatusCode") == 0):
            error_msg = data.get("msg") or data.get("StatusMessage") or "Unknown error"
            raise SinkDeliveryError(f"飞书返回错误: {error_msg}")

    def close(self) -> None:
        """关闭 HTTP 客户端"""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __repr__(self) -> str:
        return f"WebhookSink(format='{self.format}')"
