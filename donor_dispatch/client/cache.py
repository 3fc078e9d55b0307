import logging
import uuid
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class DeviceState(BaseModel):
    """What the device remembers between runs and across logout."""
    device_id: Optional[str] = None
    last_user_id: Optional[str] = None
    last_token: Optional[str] = None
    is_logged_in: bool = False


class DeviceCache:
    """
    Local key-value state for one device, persisted as JSON.

    With no path the state lives in memory only.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path).expanduser() if path else None
        self.state = self._load()
        if not self.state.device_id:
            self.update(device_id=uuid.uuid4().hex)

    def _load(self) -> DeviceState:
        if self.path is None or not self.path.exists():
            return DeviceState()
        try:
            return DeviceState.model_validate_json(self.path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable device cache {self.path}: {e}")
            return DeviceState()

    def update(self, **fields) -> DeviceState:
        self.state = self.state.model_copy(update=fields)
        if self.path is not None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(self.state.model_dump_json())
            except OSError as e:
                logger.error(f"Could not write device cache {self.path}: {e}")
        return self.state

    @property
    def device_id(self) -> str:
        return self.state.device_id
