"""XMLTV programme guide parser."""
import io
import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..models.epg import EPGProgram

log = logging.getLogger(__name__)


def parse_xmltv_time(value: Optional[str]) -> Optional[datetime]:
    """Parse ``YYYYmmddHHMMSS +ZZZZ``; a missing offset is taken as UTC."""
    if not value:
        return None
    value = value.strip()
    for fmt in ("%Y%m%d%H%M%S %z", "%Y%m%d%H%M%S%z"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class EPGParser:
    """Reads <programme> entries from an XMLTV document."""

    @classmethod
    def parse(cls, data: bytes) -> List[EPGProgram]:
        programs = []
        try:
            for _, elem in ET.iterparse(io.BytesIO(data), events=("end",)):
                if elem.tag != "programme":
                    continue
                program = cls._parse_programme(elem)
                if program is not None:
                    programs.append(program)
                elem.clear()
        except ET.ParseError as e:
            log.warning("EPG document is malformed, keeping %d programmes parsed so far: %s", len(programs), e)
        return programs

    @classmethod
    def group_by_channel(cls, programs: List[EPGProgram]) -> Dict[str, List[EPGProgram]]:
        """Programmes per channel id, sorted by start time."""
        grouped: Dict[str, List[EPGProgram]] = {}
        for program in programs:
            grouped.setdefault(program.channel_id, []).append(program)
        for items in grouped.values():
            items.sort(key=lambda p: p.start)
        return grouped

    @staticmethod
    def _parse_programme(elem: ET.Element) -> Optional[EPGProgram]:
        channel_id = elem.get("channel")
        start = parse_xmltv_time(elem.get("start"))
        stop = parse_xmltv_time(elem.get("stop"))
        if not channel_id or start is None or stop is None:
            return None
        return EPGProgram(
            channel_id=channel_id,
            title=(elem.findtext("title") or "").strip(),
            desc=(elem.findtext("desc") or "").strip(),
            start=start,
            stop=stop,
        )
