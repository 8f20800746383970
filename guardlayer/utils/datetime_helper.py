"""
日期时间辅助工具
统一时间序列化（UTC 'Z' 后缀），并为SQL生成提示提供当月/上月的日期锚点
"""
import calendar
from datetime import date, datetime, timezone
from typing import Dict, Optional


def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
    """
    将 datetime 对象转换为 ISO 8601 格式字符串（带 UTC 时区标识）

    Args:
        dt: datetime 对象（可以为 None）

    Returns:
        ISO 8601 格式字符串，带 'Z' 后缀；输入为 None 时返回 None

    Examples:
        >>> to_iso_string(datetime(2024, 11, 3, 6, 30, 0))
        '2024-11-03T06:30:00Z'
    """
    if dt is None:
        return None

    # 无时区信息时按 UTC 处理
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    dt_utc = dt.astimezone(timezone.utc)
    return dt_utc.replace(microsecond=0).isoformat().replace('+00:00', 'Z')


def month_anchors(today: date) -> Dict[str, str]:
    """
    计算提示词中使用的日期锚点

    Args:
        today: 当前日期

    Returns:
        包含 today、this_month_start、last_month_start、last_month_end 的字典

    Examples:
        >>> month_anchors(date(2025, 1, 15))["last_month_start"]
        '2024-12-01'
    """
    if today.month == 1:
        last_year, last_month = today.year - 1, 12
    else:
        last_year, last_month = today.year, today.month - 1

    last_month_days = calendar.monthrange(last_year, last_month)[1]

    return {
        "today": today.isoformat(),
        "this_month_start": today.replace(day=1).isoformat(),
        "last_month_start": date(last_year, last_month, 1).isoformat(),
        "last_month_end": date(last_year, last_month, last_month_days).isoformat(),
    }
