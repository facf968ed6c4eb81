"""
Stream selection

Parses stream selections given on the command line ("-S"), in a stream
list file ("-l"), or as plain selectors for uni-station mode ("-s"), and
converts them into the regular expression a DataLink server matches
against stream IDs of the form NET_STA_LOC_CHAN/MSEED.

Selector syntax is the SeedLink one: [LL]CCC[.T] with '?' as a single
character wildcard. The type suffix has no DataLink equivalent and is
ignored.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_NAME_PART = re.compile(r'^[A-Za-z0-9?*]{1,10}$')
_SELECTOR = re.compile(r'^(?P<code>[A-Za-z0-9?-]{3}|[A-Za-z0-9?-]{5})(?:\.(?P<type>[A-Za-z]))?$')


@dataclass
class StreamSelection:
    """One station with optional selectors"""
    network: str
    station: str
    selectors: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"{self.network}_{self.station}"

    def __str__(self):
        if self.selectors:
            return f"{self.name}:{' '.join(self.selectors)}"
        return self.name


def split_selectors(text: Optional[str]) -> List[str]:
    if not text:
        return []
    selectors = text.split()
    for selector in selectors:
        _validate_selector(selector)
    return selectors


def _validate_selector(selector: str):
    if selector.startswith('!'):
        raise ConfigurationError("negated selectors are not supported", selector)
    if not _SELECTOR.match(selector):
        raise ConfigurationError("invalid selector", selector)


def _validate_name(network: str, station: str, source: str):
    if not (_NAME_PART.match(network) and _NAME_PART.match(station)):
        raise ConfigurationError("invalid stream name", source)


def parse_multiselect(text: str, default_selectors: Optional[str] = None) -> List[StreamSelection]:
    """
    Parse 'NET_STA[:selectors],NET_STA2[:selectors],...'.

    Entries without their own selectors get the default selectors.

    Raises:
        ConfigurationError: on an empty or malformed entry
    """
    defaults = split_selectors(default_selectors)
    selections = []

    for entry in text.split(','):
        entry = entry.strip()
        if not entry:
            raise ConfigurationError("empty stream entry", text)

        name, _, selector_text = entry.partition(':')
        network, sep, station = name.strip().partition('_')
        if not sep:
            raise ConfigurationError("stream must be in NET_STA format", entry)
        _validate_name(network, station, entry)

        selectors = split_selectors(selector_text) or list(defaults)
        selections.append(StreamSelection(network, station, selectors))

    logger.debug(f"parsed {len(selections)} stream selections")
    return selections


def read_streamlist(path: Union[str, Path], default_selectors: Optional[str] = None) -> List[StreamSelection]:
    """
    Read a stream list file.

    Each line is 'NET STA [selectors...]'; blank lines and lines starting
    with '#' are ignored.

    Raises:
        ConfigurationError: if the file cannot be read or a line is malformed
    """
    defaults = split_selectors(default_selectors)
    selections = []

    try:
        with open(path, 'r', encoding='utf-8') as f:
            lines = f.readlines()
    except OSError as e:
        raise ConfigurationError(f"cannot read stream list {path}", e.strerror or str(e))

    for line_number, line in enumerate(lines, start=1):
        fields = line.split()
        if not fields or fields[0].startswith('#'):
            continue
        if len(fields) < 2:
            raise ConfigurationError(f"{path}: line {line_number}", "expected 'NET STA [selectors]'")

        network, station = fields[0], fields[1]
        _validate_name(network, station, f"{path}: line {line_number}")
        selectors = split_selectors(' '.join(fields[2:])) or list(defaults)
        selections.append(StreamSelection(network, station, selectors))

    if not selections:
        raise ConfigurationError(f"no streams in stream list {path}")

    logger.info(f"read {len(selections)} streams from {path}")
    return selections


def _name_pattern(part: str) -> str:
    return ''.join('.' if c == '?' else '[^_]*' if c == '*' else re.escape(c) for c in part)


def _selector_pattern(selector: str) -> str:
    match = _SELECTOR.match(selector)
    code = match.group('code')
    if match.group('type'):
        logger.debug(f"selector {selector}: type suffix ignored")

    def codes(text: str) -> str:
        return ''.join('.' if c == '?' else re.escape(c) for c in text)

    if len(code) == 5:
        location = code[:2]
        location = '' if location == '--' else codes(location)
        return f"{location}_{codes(code[2:])}"
    return f"[^_]*_{codes(code)}"


def _selectors_pattern(selectors: Sequence[str]) -> str:
    if not selectors:
        return '.*'
    return '(?:' + '|'.join(_selector_pattern(s) for s in selectors) + ')/MSEED'


def build_match_expression(
    selections: Sequence[StreamSelection],
    uni_selectors: Optional[str] = None,
) -> Optional[str]:
    """
    DataLink match expression for the configured streams.

    Returns:
        A regular expression, or None to receive every stream
    """
    if selections:
        parts = [
            f"{_name_pattern(s.network)}_{_name_pattern(s.station)}_{_selectors_pattern(s.selectors)}"
            for s in selections
        ]
        return '^(?:' + '|'.join(parts) + ')$'

    selectors = split_selectors(uni_selectors)
    if not selectors:
        return None
    return f"^[^_]*_[^_]*_{_selectors_pattern(selectors)}$"
