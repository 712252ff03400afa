"""Topic namespace and the static tag-to-topic mapping table (packaged JSON via importlib.resources)."""

import json
import logging
from collections.abc import Iterable, Iterator, Sequence
from importlib import resources
from pathlib import Path
from typing import Any

from .errors import MappingError
from .types import TopicMapping

logger = logging.getLogger(__name__)

_DEFAULT_PACKAGE = "uns_bridge.data"
_DEFAULT_TABLE = "filling_line.json"

DEFAULT_NAMESPACE = "v1/beverage/plant-1/filling/line-1"

# MQTT wildcards are not allowed in published topic names
_WILDCARDS = frozenset("+#")


def _check_segment(segment: str, where: str) -> None:
    if not segment or not segment.strip():
        raise ValueError(f"Empty topic segment in {where!r}")
    if segment != segment.strip():
        raise ValueError(f"Topic segment has surrounding whitespace in {where!r}: {segment!r}")
    if _WILDCARDS & set(segment):
        raise ValueError(f"Wildcard character in topic segment {segment!r} of {where!r}")


class TopicNamespace:
    """
    Fixed deployment prefix (e.g. version / organization / site / area / line)
    prepended to every mapping suffix.
    """

    def __init__(self, segments: Sequence[str]) -> None:
        if not segments:
            raise ValueError("Namespace needs at least one segment")
        for seg in segments:
            if "/" in seg:
                raise ValueError(f"Namespace segment must not contain '/': {seg!r}")
            _check_segment(seg, "/".join(segments))
        self._segments = tuple(segments)

    @classmethod
    def parse(cls, raw: str) -> "TopicNamespace":
        """Build a namespace from a slash-separated string such as 'v1/acme/site/area/line'."""
        return cls(raw.strip().strip("/").split("/"))

    @property
    def segments(self) -> tuple[str, ...]:
        return self._segments

    @property
    def prefix(self) -> str:
        return "/".join(self._segments)

    def topic(self, suffix: str) -> str:
        """Full topic for a mapping suffix: prefix + '/' + suffix."""
        return f"{self.prefix}/{suffix}"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TopicNamespace) and other._segments == self._segments

    def __hash__(self) -> int:
        return hash(self._segments)

    def __repr__(self) -> str:
        return f"TopicNamespace({self.prefix!r})"


def _validate_mapping(mapping: TopicMapping) -> None:
    if not mapping.tag or not mapping.tag.strip():
        raise MappingError(f"Empty tag identifier for suffix {mapping.suffix!r}", suffix=mapping.suffix)
    suffix = mapping.suffix
    if not suffix:
        raise MappingError(f"Empty topic suffix for tag {mapping.tag!r}", tag=mapping.tag)
    try:
        for seg in suffix.split("/"):
            _check_segment(seg, suffix)
    except ValueError as e:
        raise MappingError(str(e), suffix=suffix, tag=mapping.tag) from None


def _parse_entry(raw: Any) -> TopicMapping:
    """Build TopicMapping from a JSON entry {"tag": ..., "suffix": ...}."""
    if isinstance(raw, TopicMapping):
        return raw
    if not isinstance(raw, dict):
        raise MappingError(f"Mapping entry must be an object, got {type(raw).__name__}")
    try:
        tag = raw["tag"]
        suffix = raw["suffix"]
    except KeyError as e:
        raise MappingError(f"Mapping entry missing field {e.args[0]!r}: {raw!r}") from None
    if not isinstance(tag, str) or not isinstance(suffix, str):
        raise MappingError(f"Mapping entry fields must be strings: {raw!r}")
    return TopicMapping(tag=tag, suffix=suffix)


def _entries_from_json(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and "entries" in data:
        return data["entries"]
    raise MappingError("Mapping table must be a JSON list or an object with 'entries'")


class TopicMappingTable:
    """
    Ordered, immutable list of (tag -> topic suffix) mappings.
    Suffixes are unique across the table; a duplicate is rejected at load time.
    """

    def __init__(self, mappings: Iterable[TopicMapping]) -> None:
        self._by_tag: dict[str, tuple[TopicMapping, ...]] = {}
        seen: dict[str, TopicMapping] = {}
        rows: list[TopicMapping] = []
        for mapping in mappings:
            _validate_mapping(mapping)
            if mapping.suffix in seen:
                raise MappingError(
                    f"Duplicate topic suffix in mapping table: {mapping.suffix!r} "
                    f"(tags {seen[mapping.suffix].tag!r} and {mapping.tag!r})",
                    suffix=mapping.suffix,
                    tag=mapping.tag,
                )
            seen[mapping.suffix] = mapping
            rows.append(mapping)
            self._by_tag[mapping.tag] = self._by_tag.get(mapping.tag, ()) + (mapping,)
        if not rows:
            raise MappingError("Mapping table has no entries")
        self._mappings: tuple[TopicMapping, ...] = tuple(rows)
        logger.debug("TopicMappingTable loaded: %d entries, %d tags", len(self._mappings), len(self._by_tag))

    @classmethod
    def from_entries(cls, entries: Iterable[Any]) -> "TopicMappingTable":
        """Load from a list of {"tag", "suffix"} dicts (or TopicMapping instances)."""
        return cls(_parse_entry(entry) for entry in entries)

    @classmethod
    def from_file(cls, path: str | Path) -> "TopicMappingTable":
        p = Path(path)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise MappingError(f"Mapping table file not found: {p}") from None
        except json.JSONDecodeError as e:
            raise MappingError(f"Mapping table {p} is not valid JSON: {e}") from None
        return cls.from_entries(_entries_from_json(data))

    def mappings_for(self, tag: str) -> tuple[TopicMapping, ...]:
        """All mappings for a tag identifier (empty if the tag is not mapped)."""
        return self._by_tag.get(tag, ())

    @property
    def tag_ids(self) -> tuple[str, ...]:
        """Distinct tag identifiers in table order."""
        return tuple(self._by_tag)

    def topics(self, namespace: TopicNamespace) -> list[tuple[TopicMapping, str]]:
        return [(m, namespace.topic(m.suffix)) for m in self._mappings]

    def __iter__(self) -> Iterator[TopicMapping]:
        return iter(self._mappings)

    def __len__(self) -> int:
        return len(self._mappings)


def get_default_table() -> TopicMappingTable:
    """Load the packaged beverage filling line mapping table."""
    try:
        with resources.files(_DEFAULT_PACKAGE).joinpath(_DEFAULT_TABLE).open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Mapping table resource not found: {_DEFAULT_PACKAGE}/{_DEFAULT_TABLE}") from None
    return TopicMappingTable.from_entries(_entries_from_json(data))


def load_table(path: str | Path | None = None) -> TopicMappingTable:
    """Load the table from a JSON file, or the packaged default when no path is given."""
    if path is None:
        return get_default_table()
    return TopicMappingTable.from_file(path)
