"""
消息校验

对服务端广播的签名评论消息做重放保护：
- 相同消息ID（时间戳-评论ID）只接受一次
- 超过有效期的消息丢弃
- 配置了共享密钥时校验 HMAC-SHA256 签名
"""

import hashlib
import hmac
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

import simplejson as json

from stratizens.utils.logger import get_logger

logger = get_logger(__name__)

SIGNED_MESSAGE_TYPES = ("new-comment",)


def canonical_payload(message: Dict[str, Any]) -> str:
    """
    构造签名原文，字段顺序与服务端一致

    {"type", "contentId", "commentId", "userId", "timestamp"}
    """
    comment = message.get("comment") or {}
    return json.dumps(
        {
            "type": message.get("type"),
            "contentId": message.get("contentId"),
            "commentId": comment.get("id"),
            "userId": comment.get("userId"),
            "timestamp": message.get("timestamp"),
        },
        separators=(",", ":"),
    )


def sign_message(message: Dict[str, Any], secret: str) -> str:
    """计算消息签名（十六进制）"""
    return hmac.new(
        secret.encode("utf-8"), canonical_payload(message).encode("utf-8"), hashlib.sha256
    ).hexdigest()


class MessageGuard:
    """
    签名消息校验器

    Attributes:
        max_message_age: 消息有效期（秒）
        cache_size: 已处理消息ID缓存上限，超出时淘汰最早的一半
        secret: 签名共享密钥，None表示不校验签名
    """

    def __init__(
        self,
        max_message_age: float = 60.0,
        cache_size: int = 1000,
        secret: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_message_age = max_message_age
        self.cache_size = cache_size
        self.secret = secret
        self._clock = clock
        self._processed: "OrderedDict[str, None]" = OrderedDict()
        self.rejected_count = 0

    def __len__(self) -> int:
        return len(self._processed)

    def accept(self, message: Dict[str, Any]) -> bool:
        """
        校验消息

        Args:
            message: 已解析的JSON消息

        Returns:
            是否接受该消息；非签名消息一律接受
        """
        if message.get("type") not in SIGNED_MESSAGE_TYPES or not message.get("signature"):
            return True

        comment = message.get("comment")
        timestamp = message.get("timestamp")
        if (
            not isinstance(comment, dict)
            or isinstance(timestamp, bool)
            or not isinstance(timestamp, (int, float))
        ):
            logger.warning(f"拒绝格式错误的签名消息: type={message.get('type')}")
            self.rejected_count += 1
            return False
        message_id = f"{timestamp}-{comment.get('id')}"

        if message_id in self._processed:
            logger.warning(f"拒绝重复的消息: {message_id}")
            self.rejected_count += 1
            return False

        # 服务端时间戳单位为毫秒
        age_ms = self._clock() * 1000 - timestamp
        if age_ms > self.max_message_age * 1000:
            logger.warning(f"拒绝过期的消息: {message_id}, age={age_ms:.0f}ms")
            self.rejected_count += 1
            return False

        if self.secret is not None:
            expected = sign_message(message, self.secret)
            if not hmac.compare_digest(expected, str(message.get("signature"))):
                logger.warning(f"拒绝签名无效的消息: {message_id}")
                self.rejected_count += 1
                return False

        self._processed[message_id] = None
        # 超过上限时淘汰最早的一半，至少淘汰一条
        if len(self._processed) > self.cache_size:
            for _ in range(max(1, self.cache_size // 2)):
                self._processed.popitem(last=False)
        return True

    def clear(self) -> None:
        self._processed.clear()
