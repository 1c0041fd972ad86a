"""Persona management for the chat assistant."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from modules.services.storage_service import ProfileStore

logger = logging.getLogger(__name__)

CUSTOM_PERSONAS_KEY = "custom_personas"
DEFAULT_PERSONA_ID = "Professional"


class PersonaError(ValueError):
    """Raised for invalid persona definitions or writes to built-in personas."""


@dataclass(frozen=True, slots=True)
class Persona:
    """System instruction profile used to start a chat session."""

    id: str
    name: str
    instruction: str
    welcome_message: str

    def to_dict(self) -> Dict[str, str]:
        data = asdict(self)
        data["welcomeMessage"] = data.pop("welcome_message")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Persona":
        fields = {
            "id": data["id"],
            "name": data["name"],
            "instruction": data["instruction"],
            "welcome_message": data.get("welcomeMessage", data.get("welcome_message")),
        }
        for key, value in fields.items():
            if not isinstance(value, str) or not value.strip():
                raise PersonaError(f"字段 {key} 不能为空")
        return cls(**fields)


BUILTIN_PERSONAS: Dict[str, Persona] = {
    persona.id: persona
    for persona in (
        Persona(
            id="Nexus",
            name="Nexus (Default)",
            instruction=(
                "You are Nexus, an advanced AI assistant. Be helpful, clear, and concise. "
                "You can analyze images and text with great detail."
            ),
            welcome_message="Hello! I’m Nexus. How can I assist you today?",
        ),
        Persona(
            id="Professional",
            name="Professional",
            instruction=(
                "You are a professional assistant. Use formal language, be respectful, "
                "and provide structured responses."
            ),
            welcome_message="Good day. How may I be of service?",
        ),
        Persona(
            id="Friendly",
            name="Friendly",
            instruction="You are a warm and friendly assistant. Be cheerful, conversational, and engaging.",
            welcome_message="Hey there! 😊 What’s on your mind?",
        ),
        Persona(
            id="Witty",
            name="Witty",
            instruction="You are a witty and clever assistant. Use humor, wordplay, and clever phrasing.",
            welcome_message="Well hello! Ready for some banter and brilliance?",
        ),
    )
}


class PersonaRegistry:
    """Built-in personas plus user-defined ones persisted in the profile store.

    Lookups check the custom overlay first and the built-in table second.
    Only custom personas are ever written back.
    """

    def __init__(self, store: ProfileStore, default_id: str = DEFAULT_PERSONA_ID) -> None:
        self.store = store
        self.default_id = default_id if default_id in BUILTIN_PERSONAS else DEFAULT_PERSONA_ID
        self._custom: Dict[str, Persona] = self._load_custom()

    def _load_custom(self) -> Dict[str, Persona]:
        raw = self.store.get(CUSTOM_PERSONAS_KEY, {})
        if not isinstance(raw, dict):
            logger.warning("Stored custom personas are not a mapping, ignoring them")
            return {}
        loaded: Dict[str, Persona] = {}
        for key, entry in raw.items():
            try:
                persona = Persona.from_dict(entry)
            except (KeyError, TypeError, PersonaError) as exc:
                logger.warning("Skipping malformed custom persona %r: %s", key, exc)
                continue
            loaded[persona.id] = persona
        return loaded

    def _persist(self) -> None:
        self.store.set(
            CUSTOM_PERSONAS_KEY,
            {persona_id: persona.to_dict() for persona_id, persona in self._custom.items()},
        )

    @staticmethod
    def is_builtin(persona_id: str) -> bool:
        return persona_id in BUILTIN_PERSONAS

    def list(self) -> List[Persona]:
        """Return built-in personas first, then custom ones, in insertion order."""
        builtins = [self._custom.get(pid, persona) for pid, persona in BUILTIN_PERSONAS.items()]
        customs = [persona for pid, persona in self._custom.items() if pid not in BUILTIN_PERSONAS]
        return builtins + customs

    def list_custom(self) -> List[Persona]:
        return [persona for persona in self.list() if not self.is_builtin(persona.id)]

    def get(self, persona_id: str) -> Persona:
        """Retrieve a persona by id."""
        if persona_id in self._custom:
            return self._custom[persona_id]
        try:
            return BUILTIN_PERSONAS[persona_id]
        except KeyError as exc:
            raise KeyError(f"Persona '{persona_id}' not found") from exc

    def contains(self, persona_id: Optional[str]) -> bool:
        return bool(persona_id) and (persona_id in self._custom or persona_id in BUILTIN_PERSONAS)

    def resolve(self, persona_id: Optional[str]) -> Persona:
        """Return the persona for ``persona_id`` or the default one when unknown."""
        if persona_id and self.contains(persona_id):
            return self.get(persona_id)
        return self.get(self.default_id)

    def create(self, name: str, instruction: str, welcome_message: str) -> Persona:
        """Create and store a custom persona with a generated id."""
        persona = Persona.from_dict(
            {
                "id": f"custom-{uuid.uuid4().hex[:12]}",
                "name": (name or "").strip(),
                "instruction": (instruction or "").strip(),
                "welcome_message": (welcome_message or "").strip(),
            }
        )
        self.save(persona)
        return persona

    def save(self, persona: Persona) -> None:
        """Insert or replace a custom persona."""
        if self.is_builtin(persona.id):
            raise PersonaError(f"内置角色“{persona.id}”不可修改")
        self._custom[persona.id] = persona
        self._persist()

    def delete(self, persona_id: str) -> bool:
        """Remove a custom persona; built-in or unknown ids are left alone."""
        if self.is_builtin(persona_id) or persona_id not in self._custom:
            return False
        del self._custom[persona_id]
        self._persist()
        return True
