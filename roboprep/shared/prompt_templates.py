import re
from typing import Dict, List

VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

PLACEHOLDER_EXAMPLES: Dict[str, str] = {
    "artist": "The Rolling Stones",
    "song": "Paint It Black",
    "album": "Aftermath",
    "year": "1985",
    "genre": "80s, Rock, Top 40, etc.",
    "weather": "Sunny, 75°F",
    "condition": "clear skies",
    "guest": "Jane Doe",
    "station": "WXYZ",
    "show": "Morning Drive",
    "time": "15 seconds",
    "day": "Friday",
    "location": "Downtown",
    "city": "New York",
    "name": "Listener Name",
    "caller": "Caller Name",
    "topic": "Your Topic",
    "event": "Summer Concert",
}
DEFAULT_PLACEHOLDER = "your text here"


def detect_variables(text: str) -> List[str]:
    """Returns unique variable names in order of first appearance."""
    seen: List[str] = []
    for match in VARIABLE_PATTERN.finditer(text or ""):
        name = match.group(1).strip()
        if name and name not in seen:
            seen.append(name)
    return seen


def replace_variables(text: str, values: Dict[str, str]) -> str:
    result = text or ""
    for name, value in values.items():
        result = result.replace("{{" + name + "}}", "" if value is None else str(value))
    return result


def placeholder_example(name: str) -> str:
    key = (name or "").strip().lower()
    if key in PLACEHOLDER_EXAMPLES:
        return PLACEHOLDER_EXAMPLES[key]
    for known, example in PLACEHOLDER_EXAMPLES.items():
        if known in key:
            return example
    return DEFAULT_PLACEHOLDER
