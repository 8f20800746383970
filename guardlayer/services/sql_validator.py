"""
SQL只读校验

这是基于文本的词法检查，不是SQL解析器，也不是沙箱：通过校验的语句仍会以
连接账号的权限在目标库执行。真正的只读保证应来自只读账号，这里只做纵深防御。
"""
import re

from .errors import InvalidQuery

REASON_NOT_SELECT = "not a SELECT"
REASON_MULTIPLE_STATEMENTS = "multiple statements"
REASON_WRITE_STATEMENT = "write/DDL statement"

BANNED_KEYWORDS = ("INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "TRUNCATE", "CREATE")

_BANNED_PATTERN = re.compile(r"\b(" + "|".join(BANNED_KEYWORDS) + r")\b")


def validate_select_only(sql: str) -> None:
    """
    校验SQL是否为单条只读SELECT语句

    依次检查: 以 SELECT 开头 -> 不含分号 -> 不含写入/DDL关键字（按整词匹配）

    Args:
        sql: 候选SQL

    Raises:
        InvalidQuery: 校验失败，reason 为失败原因
    """
    statement = (sql or "").strip().upper()

    if not statement.startswith("SELECT"):
        raise InvalidQuery(REASON_NOT_SELECT, "Query must start with SELECT")

    if ";" in statement:
        raise InvalidQuery(REASON_MULTIPLE_STATEMENTS, "Query must be a single statement")

    match = _BANNED_PATTERN.search(statement)
    if match:
        raise InvalidQuery(
            REASON_WRITE_STATEMENT,
            f"Write/DDL keyword not allowed: {match.group(1)}"
        )
