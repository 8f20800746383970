"""
SQL生成提示词构建
只使用脱敏后的表结构；表/列说明中涉及已隐藏列的部分不会出现在提示词中
"""
import re
from datetime import date
from typing import List, Optional, Tuple

from ..utils.datetime_helper import month_anchors
from .dto import SchemaSnapshot, TableNote

_FK_PATTERN = re.compile(r"^(.+?)_id$", re.IGNORECASE)
_DATE_NAME_PATTERN = re.compile(r"date|time|timestamp|created|updated|started|ended", re.IGNORECASE)
_DATE_TYPE_PATTERN = re.compile(r"date|time|timestamp", re.IGNORECASE)
_NAME_PATTERN = re.compile(r"name|title|label|description", re.IGNORECASE)


def detect_relationships(schema: SchemaSnapshot) -> List[Tuple[str, str]]:
    """
    根据 <name>_id 命名推断表关系

    目标表名与 name 相同、为 name 的复数（name + 's'），或 name 为目标表名的复数，
    且目标表有 id 列。

    Returns:
        [(来源列 'orders.customer_id', 目标列 'customers.id'), ...]
    """
    tables = list(schema.keys())
    relationships = []

    for table_name in tables:
        for column in schema[table_name]:
            match = _FK_PATTERN.match(column.name)
            if not match:
                continue
            ref = match.group(1).lower()
            target = next(
                (
                    t for t in tables
                    if t.lower() == ref or t.lower() == ref + "s" or t.lower() + "s" == ref
                ),
                None,
            )
            if target and any(c.name == "id" for c in schema[target]):
                relationships.append((f"{table_name}.{column.name}", f"{target}.id"))

    return relationships


def classify_date_columns(schema: SchemaSnapshot) -> List[str]:
    """按列名或类型识别日期/时间列"""
    return [
        f"{table_name}.{column.name}"
        for table_name, columns in schema.items()
        for column in columns
        if _DATE_NAME_PATTERN.search(column.name) or _DATE_TYPE_PATTERN.search(column.type)
    ]


def classify_name_columns(schema: SchemaSnapshot) -> List[str]:
    """按列名识别名称/文本列"""
    return [
        f"{table_name}.{column.name}"
        for table_name, columns in schema.items()
        for column in columns
        if _NAME_PATTERN.search(column.name)
    ]


def visible_notes(schema: SchemaSnapshot, notes: List[TableNote]) -> List[TableNote]:
    """只保留可见表的说明，并去掉已隐藏列的列说明"""
    visible = []
    for note in notes:
        columns = schema.get(note.table_name)
        if columns is None:
            continue
        names = {c.name for c in columns}
        visible.append(note.model_copy(update={
            "columns": [c for c in note.columns if c.column_name in names]
        }))
    return visible


def build_time_context(today: date) -> str:
    anchors = month_anchors(today)
    return (
        f"Current date: {anchors['today']}.\n"
        f"This month started on {anchors['this_month_start']}.\n"
        f"Last month ran from {anchors['last_month_start']} to {anchors['last_month_end']}."
    )


def build_system_prompt(dialect: str, row_limit_hint: str = "LIMIT") -> str:
    """构建SQL生成的系统提示"""
    limit_rule = "TOP 100" if row_limit_hint == "TOP" else "LIMIT 100"

    return f"""表语义选择：
- 多个表含义相近时（如 invoices 与 vendor_invoices），按表说明和备注中的语义选择，不要只看表名
- 问题涉及 customer/client/organization 时，优先选择说明中包含这些词的表；涉及 vendor/supplier/provider 时同理
- 说明中出现 "relates to"、"references" 等描述时，以此为准确定表之间的关系
- 没有说明时根据列名和关系推断，但不要编造数据

日期理解：
- "this month" 指本月第一天到今天
- "last month" 指上一个自然月的第一天到最后一天
- 只提到月份没有年份时，取最近一次出现的该月份
- 按日期筛选时使用 DATE/TIME COLUMNS 中最相关的列

你是SQL专家，只使用下面给出的表结构，生成准确的 {dialect} SELECT 查询。

规则：
1. 只使用表结构中存在的表和列，不要编造列名
2. 可能返回大量数据的查询加上 {limit_rule}
3. 按 KNOWN RELATIONSHIPS 和表说明中的关系进行 JOIN
4. 需要日期时使用 DATE/TIME COLUMNS，需要名称时使用 NAME/TEXT COLUMNS
5. 找不到需要的列时，使用 id 列 JOIN 到其他表
6. "latest"/"most recent" 类问题按日期列倒序并只取1行
7. "who" 类问题尽量 JOIN 出名称，不要只返回ID
8. 按文本筛选（status、type、name 等）时使用不区分大小写的模糊匹配，如 LOWER(col) LIKE '%keyword%'，除非明确需要精确匹配
9. 只生成一条 SELECT 语句，不要写分号、注释、解释或 markdown"""


def build_user_prompt(
    question: str,
    schema: SchemaSnapshot,
    notes: Optional[List[TableNote]] = None,
    today: Optional[date] = None
) -> str:
    """
    构建SQL生成的用户提示

    Args:
        question: 用户问题
        schema: 脱敏后的表结构
        notes: 表/列说明
        today: 当前日期（用于日期锚点）

    Returns:
        用户提示文本
    """
    notes = visible_notes(schema, notes or [])
    note_map = {n.table_name: n for n in notes}

    schema_lines = []
    for table_name, columns in schema.items():
        column_list = ", ".join(f"{c.name} ({c.type})" for c in columns)
        line = f"TABLE {table_name}: {column_list}"
        note = note_map.get(table_name)
        if note and note.description:
            line += f"\n  Description: {note.description}"
        schema_lines.append(line)

    sections = [
        build_time_context(today or date.today()),
        f'User question: "{question}"',
        "DATABASE SCHEMA:\n" + "\n\n".join(schema_lines),
    ]

    relationships = detect_relationships(schema)
    if relationships:
        sections.append(
            "KNOWN RELATIONSHIPS:\n" + "\n".join(f"- {src} -> {dst}" for src, dst in relationships)
        )

    date_columns = classify_date_columns(schema)
    if date_columns:
        sections.append(f"DATE/TIME COLUMNS: {', '.join(date_columns)}")

    name_columns = classify_name_columns(schema)
    if name_columns:
        sections.append(f"NAME/TEXT COLUMNS: {', '.join(name_columns)}")

    if notes:
        hints = []
        for note in notes:
            block = f"TABLE {note.table_name}:\nDescription: {note.description or 'None'}"
            if note.notes:
                block += f"\nNotes: {note.notes}"
            if note.tags:
                block += f"\nTags: {', '.join(note.tags)}"
            for column in note.columns:
                block += f"\n- {note.table_name}.{column.column_name}: {column.description or 'No description'}"
                if column.example:
                    block += f" (e.g. {column.example})"
            hints.append(block)
        sections.append("METADATA HINTS:\n" + "\n\n".join(hints))

    sections.append(
        "提醒：\n"
        "- 不要编造不存在的列\n"
        "- 表说明中描述了关系时按说明 JOIN\n"
        "- 涉及人员的问题尽量 JOIN 到用户/员工表取得姓名\n"
        "- \"most\"/\"how many\" 类问题使用 GROUP BY 和 COUNT(*)\n\n"
        "请生成一条 SELECT 语句回答该问题。"
    )

    return "\n\n".join(sections)


def build_correction(last_error: str) -> str:
    """重试时附加到用户提示后的纠错说明"""
    return (
        f'Previous attempt failed with error: "{last_error}".\n\n'
        "请分析错误并修正查询：\n"
        "- 错误提示列不存在时，换用表结构中实际存在的列\n"
        "- 语法错误时检查 JOIN 条件和 WHERE 子句\n"
        "- 只能使用表结构中列出的列名，只能是一条 SELECT 语句\n\n"
        "请生成修正后的查询。"
    )
