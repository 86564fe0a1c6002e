"""
Prompt resolution.

Turns a request's prompt source into the single text prompt handed to a
generator. Resolution is pure and deterministic: identical inputs always
produce byte-identical prompts.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union

from avatar_studio.storage.models import APPEARANCE_FIELDS


# Request attribute names accepted from clients, mapped to appearance fields
ATTRIBUTE_ALIASES = {
    "gender": "gender",
    "ethnicity": "ethnicity",
    "age": "age",
    "bodyType": "body_type",
    "hairStyle": "hair_style",
    "hairColor": "hair_color",
    "eyeColor": "eye_color",
    "fashionStyle": "fashion_style",
}


@dataclass(frozen=True)
class TextPrompt:
    """Free-text prompt supplied by the caller."""
    text: str

    def __post_init__(self):
        if not self.text or not self.text.strip():
            raise ValueError("prompt text cannot be empty")


@dataclass(frozen=True)
class AttributePrompt:
    """Structured appearance attributes, stored as sorted (field, value) pairs."""
    fields: Tuple[Tuple[str, str], ...]

    @classmethod
    def from_mapping(cls, attributes: Mapping[str, Optional[str]]) -> "AttributePrompt":
        """Build from a mapping keyed by field name or client alias.

        Blank values are dropped.

        Raises:
            ValueError: On unknown attribute names or when no attribute is set
        """
        normalized: Dict[str, str] = {}
        for key, value in attributes.items():
            name = ATTRIBUTE_ALIASES.get(key, key)
            if name not in APPEARANCE_FIELDS:
                raise ValueError(f"Unknown attribute: {key}")
            if value is not None and str(value).strip():
                normalized[name] = str(value).strip()
        if not normalized:
            raise ValueError("attributes must set at least one field")
        return cls(tuple(sorted(normalized.items())))

    def as_dict(self) -> Dict[str, str]:
        return dict(self.fields)


PromptSpec = Union[TextPrompt, AttributePrompt]


def describe_appearance(attributes: Mapping[str, str]) -> str:
    """Describe appearance fields in the fixed order.

    Order: gender, ethnicity, age, body type, hair style, hair color,
    eye color, fashion style. Absent fields are omitted silently.
    """
    parts = []
    if attributes.get("gender"):
        parts.append(f"{attributes['gender']} features")
    if attributes.get("ethnicity"):
        parts.append(f"{attributes['ethnicity']} ethnicity")
    if attributes.get("age"):
        parts.append(f"{attributes['age']} age")
    if attributes.get("body_type"):
        parts.append(f"{attributes['body_type']} body type")

    hair = " ".join(
        attributes[name] for name in ("hair_style", "hair_color") if attributes.get(name)
    )
    if hair:
        parts.append(f"{hair} hair")

    if attributes.get("eye_color"):
        parts.append(f"{attributes['eye_color']} eyes")
    if attributes.get("fashion_style"):
        parts.append(f"wearing {attributes['fashion_style']} clothes")
    return ", ".join(parts)


def resolve_prompt(
    source: PromptSpec,
    style: Optional[str] = None,
    scene_description: Optional[str] = None,
    avatar_appearance: Optional[Mapping[str, str]] = None
) -> str:
    """Resolve a prompt source into generator-ready text.

    Args:
        source: Free text or structured attributes
        style: Optional style tag, appended as ", <style> style"
        scene_description: Optional scene, appended as " in a <scene>"
        avatar_appearance: Stored appearance of the target avatar; appended
            to free-text prompts so scene content keeps the avatar's look

    Returns:
        The resolved prompt string
    """
    if isinstance(source, AttributePrompt):
        prompt = f"Portrait of a person with {describe_appearance(source.as_dict())}"
    elif isinstance(source, TextPrompt):
        prompt = source.text.strip()
        appearance = describe_appearance(avatar_appearance or {})
        if appearance:
            prompt += f", featuring a person with {appearance}"
    else:
        raise TypeError(f"Unsupported prompt source: {type(source).__name__}")

    if scene_description and scene_description.strip():
        prompt += f" in a {scene_description.strip()}"
    if style and style.strip():
        prompt += f", {style.strip()} style"
    return prompt
