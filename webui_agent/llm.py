"""LLM 调用封装：统一的 ModelService 接口和 OpenAI 兼容实现"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List

import openai
from openai import AsyncOpenAI

from .exceptions import ModelOutputError, RateLimitError, TokenLimitError, TransientModelError
from .message_manager import ConversationMessage

logger = logging.getLogger(__name__)

THINK_TAGS = re.compile(r"<think>.*?</think>", re.DOTALL)
STRAY_CLOSE_TAG = re.compile(r".*?</think>", re.DOTALL)


class ModelService(ABC):
    """语言模型接口：输入消息序列，返回模型的原始文本输出"""

    @abstractmethod
    async def invoke(self, messages: List[ConversationMessage], json_mode: bool = True) -> str:
        ...


def to_openai_messages(messages: List[ConversationMessage]) -> List[Dict]:
    converted = []
    for message in messages:
        if isinstance(message.content, str):
            converted.append({"role": message.role, "content": message.content})
            continue
        parts = []
        for segment in message.content:
            if segment.type == "image":
                parts.append({"type": "image_url", "image_url": {"url": segment.image_url}})
            else:
                parts.append({"type": "text", "text": segment.text or ""})
        converted.append({"role": message.role, "content": parts})
    return converted


class OpenAIModelService(ModelService):
    """
    OpenAI 兼容的 Chat Completions 接口。

    通过 base_url 也可以接入 DashScope 等兼容服务；
    限流、超时和上下文超长会转换成对应的异常类型。
    """

    def __init__(self, client: AsyncOpenAI, model: str, temperature: float = 0):
        self.client = client
        self.model = model
        self.temperature = temperature

    async def invoke(self, messages: List[ConversationMessage], json_mode: bool = True) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=to_openai_messages(messages),
                **kwargs,
            )
        except openai.RateLimitError as e:
            raise RateLimitError(f"{self.model} 限流: {e}") from e
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            raise TransientModelError(f"{self.model} 请求超时或连接失败: {e}") from e
        except openai.BadRequestError as e:
            if "context_length_exceeded" in str(e) or "maximum context length" in str(e):
                raise TokenLimitError(f"{self.model} 输入超出上下文长度: {e}") from e
            raise
        except openai.InternalServerError as e:
            raise TransientModelError(f"{self.model} 服务端错误: {e}") from e

        content = response.choices[0].message.content or ""
        logger.debug(f"模型原始输出: {content}")
        return content


def remove_think_tags(text: str) -> str:
    text = re.sub(THINK_TAGS, "", text)
    # 只有闭合标签时，删除它之前的全部内容
    text = re.sub(STRAY_CLOSE_TAG, "", text)
    return text.strip()


def extract_json_from_model_output(content: str) -> Dict:
    """从模型输出中取出 JSON 对象，兼容 ```json 代码块和 <think> 标签"""
    content = remove_think_tags(content)
    if "```" in content:
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[len("json"):]
    try:
        data = json.loads(content.strip())
    except json.JSONDecodeError as e:
        logger.warning(f"JSON 解析失败: {e}, 原始输出: {content[:500]}")
        raise ModelOutputError(f"Could not parse response: {e}") from e
    if not isinstance(data, dict):
        raise ModelOutputError(f"Could not parse response: expected an object, got {type(data).__name__}")
    return data
