"""Prompt templates for listing and fact-check requests."""

from __future__ import annotations

from datetime import date, timedelta

from app.models.event import EventCandidate

LISTING_SYSTEM_PROMPT = (
    "你是一个专业的活动信息数据接口。只返回符合要求的 JSON 数据，"
    "不要输出任何解释文字或 markdown 标记。"
)

VERIFICATION_SYSTEM_PROMPT = (
    "你是一个严格的事实核查助手。仅依据公开、可信的来源判断活动是否真实存在，"
    "只返回 JSON 结果，不要输出多余文本。"
)

UNKNOWN = "未知"


def week_bounds(target_date: date) -> tuple[date, date]:
    """Monday and Sunday of the week containing ``target_date``."""
    monday = target_date - timedelta(days=target_date.weekday())
    return monday, monday + timedelta(days=6)


def build_listing_prompt(city: str, target_date: date) -> str:
    monday, sunday = week_bounds(target_date)
    return f"""请根据公开渠道，列出{city}在 {target_date.isoformat()} 这一天举办或进行中的展会(expo)与演唱会(concert)，\
该日期所在的一周为 {monday.isoformat()} 至 {sunday.isoformat()}。

只输出一个 JSON 数组，不要任何额外文本。信息必须真实可查，不要编造。每个元素的结构：
{{
  "title": "活动标题",
  "type": "expo" 或 "concert",
  "venue": "场馆名称",
  "address": "详细地址",
  "start_date": "YYYY-MM-DD",
  "end_date": "YYYY-MM-DD 或 null",
  "source_url": "信息来源 URL",
  "price_range": "票价范围",
  "organizer": "主办方"
}}

要求：
- type 只能是 "expo" 或 "concert"
- 所有日期使用 YYYY-MM-DD 格式
- 不要返回 city 字段
- 未知字段使用 null
- 不要使用 markdown 代码块"""


def build_verification_prompt(event: EventCandidate, city: str) -> str:
    end_date = event.end_date.isoformat() if event.end_date else "null"
    return f"""请核实以下活动是否真实存在，并且能在公开渠道查证。请基于可信来源判断。

城市: {city}
标题: {event.title}
类型: {event.type.value}
场馆: {event.venue or UNKNOWN}
地址: {event.address or UNKNOWN}
开始日期: {event.start_date.isoformat()}
结束日期: {end_date}
来源链接: {event.source_url or UNKNOWN}
票价: {event.price_range or UNKNOWN}
主办方: {event.organizer or UNKNOWN}

只返回如下 JSON，不要包含额外文本：
{{
  "verified": true 或 false,
  "confidence": 0 到 1 之间的数字,
  "reason": "简短说明所依据的证据"
}}"""
