"""
Session storage abstraction.

Separates persistence from session logic for testability. The store only
reads and writes GameState snapshots; deciding when to save is up to the
caller.
"""

import json
import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from .schema import GameState

logger = logging.getLogger(__name__)

AUTOSAVE_FILE = "autosave.json"
ARCHIVE_DIR = "archived"
CAMPAIGN_PREFIX = "campaign-"


def campaign_filename(campaign_name: str) -> str:
    """Map a campaign name to its save file name."""
    safe = re.sub(r"[^a-z0-9_-]", "_", campaign_name, flags=re.IGNORECASE).lower()
    return f"{CAMPAIGN_PREFIX}{safe}.json"


def _campaign_summary(filename: str, state: GameState, fallback_time: datetime) -> dict:
    return {
        "filename": filename,
        "campaign_name": state.metadata.campaign_name
        or filename.removeprefix(CAMPAIGN_PREFIX).removesuffix(".json"),
        "last_saved": state.metadata.last_saved or fallback_time,
        "character_count": len(state.characters),
        "session_count": state.metadata.session_count,
    }


@runtime_checkable
class SessionStore(Protocol):
    """
    Abstract storage interface for sessions.

    Implementations:
    - JsonSessionStore: File-based persistence (production)
    - MemorySessionStore: In-memory storage (testing)
    """

    def save_autosave(self, state: GameState) -> None:
        """Persist the rolling autosave."""
        ...

    def load_autosave(self) -> GameState | None:
        """Load the autosave. Returns None if there is none."""
        ...

    def archive_autosave(self) -> str | None:
        """Move the current autosave aside. Returns the archive name."""
        ...

    def save_campaign(self, state: GameState, campaign_name: str) -> str:
        """Persist a named campaign save. Returns its filename."""
        ...

    def load_campaign(self, filename: str) -> GameState | None:
        """Load a campaign save. Returns None if not found."""
        ...

    def list_campaigns(self) -> list[dict]:
        """List campaign saves, newest first."""
        ...


class JsonSessionStore:
    """
    File-based session storage using JSON.

    Layout under sessions_dir:
    - autosave.json
    - campaign-<name>.json (plus a .bak of the previous save)
    - archived/autosave-<timestamp>.json
    """

    def __init__(self, sessions_dir: Path | str = "sessions"):
        self.sessions_dir = Path(sessions_dir)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.archive_dir = self.sessions_dir / ARCHIVE_DIR
        self.archive_dir.mkdir(exist_ok=True)

    @property
    def autosave_path(self) -> Path:
        return self.sessions_dir / AUTOSAVE_FILE

    def _write(self, path: Path, state: GameState) -> None:
        # Backup previous save
        if path.exists():
            backup = path.with_suffix(".json.bak")
            backup.write_text(path.read_text(encoding="utf-8"), encoding="utf-8")
        path.write_text(state.model_dump_json(indent=2), encoding="utf-8")

    def _read(self, path: Path) -> GameState | None:
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        return GameState.model_validate(data)

    def _campaign_path(self, filename: str) -> Path | None:
        """Resolve a campaign filename, refusing anything outside sessions_dir."""
        filename = str(filename or "").strip()
        if (
            not filename
            or Path(filename).name != filename
            or not filename.startswith(CAMPAIGN_PREFIX)
            or not filename.endswith(".json")
        ):
            return None
        return self.sessions_dir / filename

    def save_autosave(self, state: GameState) -> None:
        self._write(self.autosave_path, state)

    def load_autosave(self) -> GameState | None:
        return self._read(self.autosave_path)

    def archive_autosave(self) -> str | None:
        if not self.autosave_path.exists():
            return None
        name = f"autosave-{datetime.now().strftime('%Y%m%d-%H%M%S-%f')}.json"
        shutil.move(str(self.autosave_path), str(self.archive_dir / name))
        return name

    def save_campaign(self, state: GameState, campaign_name: str) -> str:
        filename = campaign_filename(campaign_name)
        self._write(self.sessions_dir / filename, state)
        return filename

    def load_campaign(self, filename: str) -> GameState | None:
        path = self._campaign_path(filename)
        if path is None:
            logger.debug(f"Refusing campaign filename {filename!r}")
            return None
        return self._read(path)

    def list_campaigns(self) -> list[dict]:
        """
        List campaign saves sorted by last save time.

        Returns list of dicts with: filename, campaign_name, last_saved,
        character_count, session_count. Unreadable files are skipped.
        """
        campaigns = []

        for f in self.sessions_dir.glob(f"{CAMPAIGN_PREFIX}*.json"):
            try:
                state = self._read(f)
            except (json.JSONDecodeError, ValidationError, OSError) as e:
                logger.warning(f"Skipping unreadable campaign {f.name}: {e}")
                continue
            if state is None:
                continue
            mtime = datetime.fromtimestamp(f.stat().st_mtime)
            campaigns.append(_campaign_summary(f.name, state, mtime))

        campaigns.sort(key=lambda c: c["last_saved"], reverse=True)
        return campaigns


class MemorySessionStore:
    """
    In-memory session storage for testing.

    No file I/O - snapshots are deep-copied in and out so callers never
    share objects with the store.
    """

    def __init__(self):
        self.autosave: GameState | None = None
        self.archived: dict[str, GameState] = {}
        self.campaigns: dict[str, GameState] = {}

    def save_autosave(self, state: GameState) -> None:
        self.autosave = state.model_copy(deep=True)

    def load_autosave(self) -> GameState | None:
        return self.autosave.model_copy(deep=True) if self.autosave else None

    def archive_autosave(self) -> str | None:
        if self.autosave is None:
            return None
        name = f"autosave-{len(self.archived) + 1}.json"
        self.archived[name] = self.autosave
        self.autosave = None
        return name

    def save_campaign(self, state: GameState, campaign_name: str) -> str:
        filename = campaign_filename(campaign_name)
        self.campaigns[filename] = state.model_copy(deep=True)
        return filename

    def load_campaign(self, filename: str) -> GameState | None:
        state = self.campaigns.get(filename)
        return state.model_copy(deep=True) if state else None

    def list_campaigns(self) -> list[dict]:
        campaigns = [
            _campaign_summary(filename, state, datetime.min)
            for filename, state in self.campaigns.items()
        ]
        campaigns.sort(key=lambda c: c["last_saved"], reverse=True)
        return campaigns

    def clear(self) -> None:
        """Drop everything (test utility)."""
        self.autosave = None
        self.archived.clear()
        self.campaigns.clear()
