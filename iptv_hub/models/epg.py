"""EPG programme model (XMLTV <programme>)."""
from dataclasses import dataclass
from datetime import datetime


@dataclass
class EPGProgram:
    channel_id: str
    title: str
    start: datetime
    stop: datetime
    desc: str = ""

    def is_airing(self, now: datetime) -> bool:
        return self.start <= now <= self.stop
