"""
认证握手

连接建立后立即发送一次认证消息，不等待服务端确认。
"""

from typing import Any, Dict, Optional

import simplejson as json

from stratizens.realtime.models import Identity, IdentityProvider
from stratizens.utils.logger import get_logger

logger = get_logger(__name__)

AUTHENTICATE_TYPE = "authenticate"


def build_auth_message(identity: Identity, placeholder_token: str) -> Dict[str, Any]:
    """
    构造认证消息

    Args:
        identity: 用户身份
        placeholder_token: 身份中没有令牌时使用的占位令牌

    Returns:
        {"type": "authenticate", "userId": ..., "token": ...}
    """
    token = identity.token
    if not token:
        logger.warning(f"用户 [{identity.user_id}] 未提供认证令牌，使用占位令牌")
        token = placeholder_token
    return {"type": AUTHENTICATE_TYPE, "userId": identity.user_id, "token": token}


def encode_auth_frame(
    provider: Optional[IdentityProvider], placeholder_token: str
) -> Optional[str]:
    """
    读取当前身份并编码认证帧

    Returns:
        JSON文本；没有身份时返回None
    """
    if provider is None:
        return None
    try:
        identity = provider()
    except Exception as e:
        logger.error(f"读取用户身份失败: {e}")
        return None
    if identity is None:
        return None
    return json.dumps(build_auth_message(identity, placeholder_token))
