# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.domain import models

RECENT_CONTEXT_SIZE = 4
PREVIEW_CHARS = 100

_FORMATTING_AND_GUIDELINES = """FORMATTING GUIDELINES:
- When creating numbered lists, use proper sequential numbering: 1., 2., 3., etc.
- When creating bullet points, use consistent bullet symbols: - or •
- NEVER use "1." for every item in a numbered list
- Double-check that numbered lists increment properly (1., 2., 3., 4., not 1., 1., 1., 1.)
- For step-by-step instructions, always use sequential numbers

GUIDELINES:
- You have access to information about all of the user's children listed in the YOUR CHILDREN section
- When asked about their kids, provide the names and ages from that section
- Always reference children by name when discussing parenting topics
- Be helpful and provide specific guidance
- When experts are available, mention them by name and specialty
- NEVER invent expert names - only mention the ones provided above
- Be warm and supportive
- Keep responses concise but informative
- Use proper list formatting as specified above"""


@dataclass
class EnhancedChatContext:
    parent: Optional[models.Profile]
    children: List[models.Kid] = field(default_factory=list)
    current_child: Optional[models.Kid] = None
    recent_messages: List[models.Message] = field(default_factory=list)
    last_four_messages: List[models.Message] = field(default_factory=list)
    conversation_history: str = ""
    current_session_summary: str = ""
    session_history: List[models.ChatSession] = field(default_factory=list)


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    text = text or ""
    return text[:limit] + ("..." if len(text) > limit else "")


def render_conversation_history(messages: List[models.Message]) -> str:
    """messages 为时间正序；除最后 4 条外都截断显示"""
    earlier = messages[:-RECENT_CONTEXT_SIZE] if len(messages) > RECENT_CONTEXT_SIZE else []
    recent = messages[-RECENT_CONTEXT_SIZE:]

    text = ""
    if earlier:
        lines = "\n".join(f"{m.role}: {preview(m.content)}" for m in earlier)
        text += f"Earlier conversation:\n{lines}\n\n"
    if recent:
        lines = "\n".join(f"{m.role}: {m.content}" for m in recent)
        text += f"Recent conversation (most important):\n{lines}"
    return text


def _fmt_day(ts: Optional[int]) -> str:
    if not ts:
        return ""
    d = dt.datetime.fromtimestamp(int(ts)).date()
    return f"{d.month}/{d.day}/{d.year}"


def _child_line(index: int, child: models.Kid) -> str:
    if child.is_expecting:
        due = f", Due: {child.due_date.isoformat()}" if child.due_date else ""
        return f"{index}. {child.expected_name or 'Baby'} (Expecting{due})"
    born = f", Born: {child.birth_date.isoformat()}" if child.birth_date else ""
    return f"{index}. {child.first_name or 'Child'} (Age: {child.age or 'Not specified'}{born})"


def build_system_prompt(ctx: EnhancedChatContext, experts: List[Dict[str, Any]]) -> str:
    parent = ctx.parent
    styles = ", ".join(parent.parenting_styles or []) if parent is not None else ""

    prompt = (
        "You are Whisperoo's AI parenting assistant. Provide helpful, personalized responses.\n\n"
        f"PARENT: {(parent.first_name if parent else None) or 'Parent'}\n"
        f"- Role: {(parent.role if parent else None) or 'Not specified'}\n"
        f"- Parenting Styles: {styles or 'Not specified'}"
    )

    if ctx.children:
        prompt += "\n\nYOUR CHILDREN:"
        for i, child in enumerate(ctx.children, start=1):
            prompt += "\n" + _child_line(i, child)
    else:
        prompt += "\n\nYOUR CHILDREN: No children information available"

    if ctx.current_child is not None:
        c = ctx.current_child
        prompt += (
            f"\n\nCURRENT CONVERSATION FOCUS: {c.first_name or c.expected_name}, "
            f"Age: {c.age or 'Not specified'}"
        )

    if experts:
        prompt += "\n\nAVAILABLE WHISPEROO EXPERTS:"
        for e in experts:
            prompt += f"\n- {e['name']}, specializing in {e['specialty']}"
            if e.get("experience_years"):
                prompt += f" ({e['experience_years']} years experience)"
            if e.get("similarity_score"):
                prompt += f" [Relevance: {e['similarity_score'] * 100:.0f}%]"
        prompt += (
            "\n\nEXPERT RECOMMENDATIONS: Only mention these experts if their expertise is directly "
            "relevant to the user's specific query. Use the relevance scores to judge how well each "
            "expert matches. Don't force expert recommendations if the question can be answered with "
            "general parenting advice."
        )

    if ctx.session_history:
        names = {c.id: c.first_name for c in ctx.children}
        prompt += "\n\nPREVIOUS CONVERSATION HISTORY:"
        for i, s in enumerate(ctx.session_history, start=1):
            about = names.get(s.child_id) if s.child_id else None
            about_txt = f", about {about}" if about else ""
            prompt += f"\n{i}. [{_fmt_day(s.last_message_at)}{about_txt}]: {s.summary}"
        prompt += (
            "\n\nIMPORTANT: Use this history to provide continuity and avoid repeating advice. "
            "Reference previous discussions when relevant."
        )

    if ctx.current_session_summary:
        prompt += f"\n\nCURRENT SESSION SUMMARY: {ctx.current_session_summary}"

    if ctx.last_four_messages:
        prompt += "\n\nIMMEDIATE CONVERSATION CONTEXT (Last 4 messages):"
        for i, m in enumerate(ctx.last_four_messages, start=1):
            who = "Parent" if m.role == "user" else "Assistant"
            prompt += f"\n{i}. {who}: {(m.content or '')[:PREVIEW_CHARS]}..."

    prompt += "\n\n" + _FORMATTING_AND_GUIDELINES
    return prompt


def build_chat_messages(
    ctx: EnhancedChatContext,
    experts: List[Dict[str, Any]],
    user_message: str,
) -> List[Dict[str, str]]:
    """system + 最近 4 条已存消息 + 本轮用户消息"""
    messages: List[Dict[str, str]] = [{"role": "system", "content": build_system_prompt(ctx, experts)}]
    for m in ctx.recent_messages[-RECENT_CONTEXT_SIZE:]:
        messages.append({"role": "user" if m.role == "user" else "assistant", "content": m.content})
    messages.append({"role": "user", "content": user_message})
    return messages
