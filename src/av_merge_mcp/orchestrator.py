"""请求登记与取消。

每个工具调用对应一个 asyncio Task。取消该 Task 会传递到
ProcessRunner，由其终止正在运行的 FFmpeg 进程，而不仅仅是放弃等待。
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

__all__ = ["RequestRegistry", "RequestInfo"]

logger = logging.getLogger(__name__)


@dataclass
class RequestInfo:
    """活动请求的信息。

    Attributes:
        request_id: 唯一请求标识符
        tool_name: 工具名称
        task: 关联的 asyncio Task
        created_at: 创建时间
        summary: 简要说明（如输出路径）
    """

    request_id: str
    tool_name: str
    task: asyncio.Task
    created_at: datetime = field(default_factory=datetime.now)
    summary: str = ""

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        status = "running" if not self.task.done() else "done"
        return (
            f"RequestInfo(id={self.request_id[:8]}..., "
            f"tool={self.tool_name}, "
            f"status={status}, "
            f"elapsed={elapsed:.1f}s)"
        )


class RequestRegistry:
    """活动请求的注册表。

    所有操作都是同步的，由调用方保证在同一个事件循环中调用。
    """

    def __init__(self) -> None:
        self._requests: dict[str, RequestInfo] = {}

    @staticmethod
    def generate_request_id() -> str:
        """生成 UUID4 格式的请求 ID。"""
        return str(uuid.uuid4())

    def register(
        self,
        request_id: str,
        tool_name: str,
        task: asyncio.Task,
        summary: str = "",
    ) -> None:
        """登记新请求。

        Raises:
            ValueError: 如果 request_id 已存在
        """
        if request_id in self._requests:
            raise ValueError(f"Request {request_id} already registered")

        info = RequestInfo(
            request_id=request_id,
            tool_name=tool_name,
            task=task,
            summary=summary,
        )
        self._requests[request_id] = info
        logger.debug(f"Registered request: {info}")

    def unregister(self, request_id: str) -> bool:
        """注销请求，请求存在则返回 True。"""
        info = self._requests.pop(request_id, None)
        if info is None:
            return False
        logger.debug(f"Unregistered request: {info}")
        return True

    def get(self, request_id: str) -> RequestInfo | None:
        return self._requests.get(request_id)

    def cancel(self, request_id: str) -> bool:
        """取消指定请求。

        Returns:
            请求存在且未完成则返回 True
        """
        info = self._requests.get(request_id)
        if info and not info.task.done():
            info.task.cancel()
            logger.info(f"Cancelled request: {info}")
            return True
        return False

    def cancel_all(self) -> int:
        """取消所有活动请求，返回发起取消的数量。"""
        cancelled = 0
        for info in list(self._requests.values()):
            if not info.task.done():
                info.task.cancel()
                logger.info(f"Cancelled request: {info}")
                cancelled += 1

        if cancelled > 0:
            logger.info(f"Cancelled {cancelled} active request(s)")

        return cancelled

    def has_active_requests(self) -> bool:
        return any(not info.task.done() for info in self._requests.values())

    @property
    def active_count(self) -> int:
        return sum(1 for info in self._requests.values() if not info.task.done())

    def list_active(self) -> list[RequestInfo]:
        """列出活动请求（按创建时间排序）。"""
        active = [info for info in self._requests.values() if not info.task.done()]
        return sorted(active, key=lambda x: x.created_at)

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._requests
