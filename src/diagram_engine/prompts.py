"""
Prompt construction for diagram generation.

The system prompt asks the model for a bare JSON array of Excalidraw
elements; the chart type adds a layout hint to the user turn.
"""

from __future__ import annotations

from diagram_engine.adapters.base import ImageAttachment, Message

SYSTEM_PROMPT = """\
You are an expert at turning descriptions into Excalidraw diagrams.

Reply with ONLY a JSON array of Excalidraw elements. No explanations and no \
Markdown code fences.

Every element needs at least:
- "id": a unique string
- "type": one of "rectangle", "ellipse", "diamond", "arrow", "line", "text"
- "x", "y": numeric top-left coordinates

Use "width" and "height" for shapes, "text" and "fontSize" for text, and \
"points" plus "startBinding"/"endBinding" for arrows that connect shapes. \
Lay elements out left-to-right or top-to-bottom without overlaps, and keep \
labels short. Escape any double quotes inside string values."""

CHART_TYPE_HINTS: dict[str, str] = {
    "flowchart": "Draw a flowchart: process steps as rectangles, decisions as diamonds, arrows for flow.",
    "mindmap": "Draw a mind map: the central topic in the middle with branches radiating outward.",
    "orgchart": "Draw an organization chart: a top-down hierarchy of roles.",
    "sequence": "Draw a sequence diagram: participants across the top, messages as horizontal arrows in time order.",
    "class": "Draw a UML class diagram: classes as boxes with fields and methods, arrows for relationships.",
    "er": "Draw an entity-relationship diagram: entities as rectangles with attributes, labelled relationship lines.",
    "architecture": "Draw a system architecture diagram: components grouped by layer, arrows for data and calls.",
    "network": "Draw a network topology: devices as shapes, links as lines.",
    "timeline": "Draw a timeline: events placed in order along a horizontal axis.",
    "state": "Draw a state diagram: states as rounded rectangles, transitions as labelled arrows.",
    "swimlane": "Draw a swimlane diagram: one lane per actor, steps placed in their lane.",
    "tree": "Draw a tree: the root at the top, children below their parent.",
    "dataflow": "Draw a data flow diagram: processes, data stores and external entities joined by arrows.",
}


def chart_type_hint(chart_type: str) -> str | None:
    """Layout hint for ``chart_type``; None for ``auto`` or unknown types."""
    return CHART_TYPE_HINTS.get(chart_type.lower())


def build_messages(
    user_input: str,
    chart_type: str = "auto",
    image: ImageAttachment | None = None,
    system_prompt: str = SYSTEM_PROMPT,
) -> list[Message]:
    """
    Build the conversation for a single-turn generation.

    Args:
        user_input: The user's diagram description
        chart_type: ``auto`` or a key of ``CHART_TYPE_HINTS``
        image: Optional reference image attached to the user turn
        system_prompt: Override for the default system prompt

    Returns:
        System and user messages
    """
    content = user_input.strip()
    hint = chart_type_hint(chart_type)
    if hint:
        content = f"{content}\n\n{hint}"

    return [
        Message(role="system", content=system_prompt),
        Message(role="user", content=content, image=image),
    ]
