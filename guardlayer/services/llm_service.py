"""
LLM服务 - 使用LiteLLM集成大语言模型
对外只提供 complete(system_prompt, user_prompt) 及基于它的SQL生成、结果总结
"""
import os
import re
import json
import asyncio
from typing import List, Dict, Any, Optional

import litellm
from litellm import acompletion

from ..utils.logger import get_logger, log_llm_error

logger = get_logger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:sql)?", re.IGNORECASE)

SUMMARY_SAMPLE_ROWS = 3


def clean_sql(text: Optional[str]) -> str:
    """
    清理LLM返回的SQL: 去掉代码块标记、首尾空白和末尾分号

    Examples:
        >>> clean_sql("```sql\\nSELECT 1;\\n```")
        'SELECT 1'
    """
    sql = _FENCE_PATTERN.sub("", text or "").strip()
    while sql.endswith(";"):
        sql = sql[:-1].rstrip()
    return sql


class LLMService:
    """LLM服务类 - 处理所有与大语言模型的交互"""

    def __init__(self, default_model: str = None):
        """
        初始化LLM服务

        Args:
            default_model: 默认使用的模型名称
        """
        self.default_model = default_model or os.getenv("DEFAULT_MODEL", "gpt-4o-mini")

        # 配置LiteLLM
        litellm.set_verbose = os.getenv("LITELLM_VERBOSE", "False").lower() == "true"

        # 网络层重试配置（与SQL生成的重试相互独立）
        self.max_retries = 3
        self.retry_delay = 1  # 秒

        logger.info(f"LLM服务初始化完成，默认模型: {self.default_model}")

    async def _call_llm_with_retry(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> str:
        """
        调用LLM并实现重试逻辑

        Args:
            messages: 消息列表
            model: 模型名称
            temperature: 温度参数
            max_tokens: 最大token数

        Returns:
            LLM响应内容

        Raises:
            Exception: 重试失败后抛出异常
        """
        last_error = None

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"调用LLM (尝试 {attempt + 1}/{self.max_retries}): model={model}")

                for i, msg in enumerate(messages):
                    logger.debug(
                        f"  消息 {i+1} [{msg.get('role', 'unknown')}]:\n"
                        f"{'='*60}\n"
                        f"{msg.get('content', '')}\n"
                        f"{'='*60}"
                    )

                response = await acompletion(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )

                content = response.choices[0].message.content or ""

                logger.debug(f"LLM响应:\n{'='*60}\n{content}\n{'='*60}")

                usage = getattr(response, 'usage', None)
                if usage is not None:
                    logger.info(
                        f"Token使用: prompt={usage.prompt_tokens}, "
                        f"completion={usage.completion_tokens}, "
                        f"total={usage.total_tokens}"
                    )

                return content

            except Exception as e:
                last_error = e
                logger.warning(
                    f"LLM调用失败 (尝试 {attempt + 1}/{self.max_retries}): {str(e)}",
                    exc_info=attempt == self.max_retries - 1
                )

                if attempt < self.max_retries - 1:
                    # 指数退避
                    delay = self.retry_delay * (2 ** attempt)
                    logger.debug(f"等待 {delay} 秒后重试...")
                    await asyncio.sleep(delay)

        prompt = messages[-1].get('content', '') if messages else ''
        log_llm_error(logger, model, prompt, last_error)
        raise Exception(f"LLM服务调用失败: {str(last_error)}")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
        model: str = None
    ) -> str:
        """
        文本补全

        Args:
            system_prompt: 系统提示
            user_prompt: 用户提示
            temperature: 温度参数
            model: 使用的模型（可选）

        Returns:
            模型返回的文本
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await self._call_llm_with_retry(
            messages=messages,
            model=model or self.default_model,
            temperature=temperature,
        )

    async def generate_sql(self, system_prompt: str, user_prompt: str) -> str:
        """
        生成候选SQL（已清理代码块标记和末尾分号，未做安全校验）
        """
        response = await self.complete(system_prompt, user_prompt, temperature=0.1)
        sql = clean_sql(response)
        logger.info(f"生成候选SQL: {sql[:200]}")
        return sql

    async def summarize_result(
        self,
        question: str,
        sql: str,
        rows: List[Dict[str, Any]],
        row_count: int
    ) -> str:
        """
        用自然语言总结查询结果（rows 必须是已脱敏的数据）

        Args:
            question: 用户问题
            sql: 执行的SQL
            rows: 已脱敏的结果行
            row_count: 结果总行数

        Returns:
            总结文本；模型返回空内容时返回空字符串
        """
        sample = json.dumps(rows[:SUMMARY_SAMPLE_ROWS], ensure_ascii=False, indent=2, default=str)

        system_prompt = (
            "你是数据分析助手，根据查询结果简洁、准确地回答用户问题。"
            "结果中出现的具体名称、日期和数字要明确说出；被掩码的值（如 ■■■、[HASH_...]）不要猜测原值。"
            "使用与用户问题相同的语言回答。"
        )
        user_prompt = f"""User asked: "{question}"

SQL executed: {sql}

Number of results: {row_count}

Sample data (first {SUMMARY_SAMPLE_ROWS} rows):
{sample}

要求：
1. 直接回答问题，尽量给出具体数字和名称
2. "who" 类问题提到结果中的人名；涉及趋势时描述看到的规律
3. 简洁但信息完整"""

        response = await self.complete(system_prompt, user_prompt, temperature=0.3)
        return (response or "").strip()


# 全局LLM服务实例
_llm_service = None


def get_llm_service() -> LLMService:
    """获取全局LLM服务实例"""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
