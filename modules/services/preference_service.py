"""Small persisted user preferences."""

from __future__ import annotations

from typing import Optional

from modules.services.storage_service import ProfileStore

SELECTED_PERSONA_KEY = "selected_persona_id"
TTS_ENABLED_KEY = "tts_enabled"


class PreferenceService:
    """Typed accessors over the profile store."""

    def __init__(self, store: ProfileStore) -> None:
        self.store = store

    @property
    def selected_persona_id(self) -> Optional[str]:
        value = self.store.get(SELECTED_PERSONA_KEY)
        return value if isinstance(value, str) and value else None

    @selected_persona_id.setter
    def selected_persona_id(self, persona_id: str) -> None:
        self.store.set(SELECTED_PERSONA_KEY, persona_id)

    @property
    def tts_enabled(self) -> bool:
        value = self.store.get(TTS_ENABLED_KEY, False)
        return value if isinstance(value, bool) else False

    @tts_enabled.setter
    def tts_enabled(self, enabled: bool) -> None:
        self.store.set(TTS_ENABLED_KEY, bool(enabled))
