"""
流式传输 - 把智能体事件编码为 NDJSON
"""
from contextlib import aclosing
from typing import AsyncIterator, List, Optional
import logging

import anyio

from ..models.events import StreamEvent
from .agent import StreamingAgent
from .model_client import Attachment, ChatMessage


logger = logging.getLogger(__name__)


NDJSON_MEDIA_TYPE = "application/x-ndjson"


async def stream_ndjson(
    agent: StreamingAgent,
    message: str,
    attachments: Optional[List[Attachment]] = None,
    history: Optional[List[ChatMessage]] = None
) -> AsyncIterator[str]:
    """
    驱动智能体并逐行产出 NDJSON

    保证恰好一个 done 事件结尾；消费方提前断开时关闭智能体的事件流，
    无论如何结束都会调用一次 agent.close()；服务端因断开而取消流时，
    close() 在屏蔽取消的作用域中执行完毕。
    """
    done_sent = False
    try:
        try:
            async with aclosing(agent.stream_message(message, attachments, history)) as events:
                async for event in events:
                    yield event.to_ndjson()
                    if event.is_done:
                        done_sent = True
                        break
        except Exception as e:
            logger.error(f"Stream of agent {agent.agent_id} failed: {e}", exc_info=True)
            yield StreamEvent.failure(f"Stream failed: {e}").to_ndjson()

        if not done_sent:
            yield StreamEvent.done().to_ndjson()
    finally:
        with anyio.CancelScope(shield=True):
            await agent.close()
