import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

import polars as pl

from atlas_ingest.geometry.path_cleanup import ClipRule
from atlas_ingest.ingestion.error import RunStartupError
from atlas_ingest.runtime_utils.process_logger import ProcessLogger

DEFAULT_OVERRIDE_FILE = os.path.join(os.path.dirname(__file__), "default_overrides.json")

# (search, replacement)
Substitution = Tuple[str, str]


@dataclass(frozen=True)
class StyleEntry:
    """
    display override for a feed. with a route_key the entry only applies to
    paths whose first route has that short name or route id, without one it
    applies feed wide.

    replace_color makes a feed wide color conditional, it only applies when
    the declared color is missing or equal to replace_color.
    default_text_color replaces the black fallback when nothing declares a
    text color.
    """

    feed_id: str
    route_key: Optional[str] = None
    color: Optional[str] = None
    text_color: Optional[str] = None
    replace_color: Optional[str] = None
    default_text_color: Optional[str] = None


@dataclass(frozen=True)
class PathRouteAlias:
    """
    adds a synthetic route id to the paths of a feed. the path id has every
    strip token removed and the remainder is looked up in aliases.
    """

    feed_id: str
    aliases: Dict[str, str]
    strip: Tuple[str, ...] = ()

    def alias_for(self, path_id: str) -> Optional[str]:
        """synthetic route id for a path, if any"""
        cleaned = path_id
        for token in self.strip:
            cleaned = cleaned.replace(token, "")
        return self.aliases.get(cleaned)


@dataclass(frozen=True)
class OverrideTable:
    """all per feed and per route special cases used during ingestion"""

    denylist: FrozenSet[str] = frozenset()
    styles: Tuple[StyleEntry, ...] = ()
    label_substitutions: Tuple[Substitution, ...] = ()
    joined_label_substitutions: Tuple[Substitution, ...] = ()
    clip_rules: Tuple[ClipRule, ...] = ()
    path_route_aliases: Tuple[PathRouteAlias, ...] = ()

    _route_styles: Dict[Tuple[str, str], StyleEntry] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )
    _feed_styles: Dict[str, StyleEntry] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # later entries win, same as registry scalars
        for entry in self.styles:
            if entry.route_key is None:
                self._feed_styles[entry.feed_id] = entry
            else:
                self._route_styles[(entry.feed_id, entry.route_key)] = entry

    def is_denied(self, feed_id: str) -> bool:
        """check if a feed is excluded from ingestion"""
        return feed_id in self.denylist

    def route_style(self, feed_id: str, route_key: str) -> Optional[StyleEntry]:
        """style entry keyed on a feed and route short name or route id"""
        return self._route_styles.get((feed_id, route_key))

    def feed_style(self, feed_id: str) -> Optional[StyleEntry]:
        """feed wide style entry"""
        return self._feed_styles.get(feed_id)

    def aliases_for(self, feed_id: str) -> List[PathRouteAlias]:
        """path route aliases configured for a feed"""
        return [alias for alias in self.path_route_aliases if alias.feed_id == feed_id]


def _substitutions(raw: Sequence[Any]) -> Tuple[Substitution, ...]:
    return tuple((str(search), str(replacement)) for search, replacement in raw)


def override_table_from_dict(raw: Dict[str, Any]) -> OverrideTable:
    """build an override table from its json representation"""
    return OverrideTable(
        denylist=frozenset(raw.get("denylist", [])),
        styles=tuple(StyleEntry(**entry) for entry in raw.get("styles", [])),
        label_substitutions=_substitutions(raw.get("label_substitutions", [])),
        joined_label_substitutions=_substitutions(raw.get("joined_label_substitutions", [])),
        clip_rules=tuple(ClipRule(**rule) for rule in raw.get("clip_rules", [])),
        path_route_aliases=tuple(
            PathRouteAlias(
                feed_id=alias["feed_id"],
                aliases=dict(alias["aliases"]),
                strip=tuple(alias.get("strip", [])),
            )
            for alias in raw.get("path_route_aliases", [])
        ),
    )


def load_override_table(override_file: Optional[str] = None) -> OverrideTable:
    """
    read an override table from a json file, falling back to the rules
    shipped with this package. a missing or malformed file stops the run.
    """
    if override_file is None:
        override_file = DEFAULT_OVERRIDE_FILE

    process_logger = ProcessLogger("load_override_table", override_file=override_file)
    process_logger.log_start()

    try:
        with open(override_file, "r", encoding="utf8") as reader:
            table = override_table_from_dict(json.load(reader))
    except (OSError, ValueError, TypeError, KeyError) as exception:
        startup_error = RunStartupError(f"Unable to load override table {override_file}: {exception}")
        process_logger.log_failure(startup_error)
        raise startup_error from exception

    process_logger.add_metadata(
        denied_feeds=len(table.denylist),
        style_entries=len(table.styles),
        clip_rules=len(table.clip_rules),
    )
    process_logger.log_complete()

    return table


def load_realtime_patch(patch_file: Optional[str]) -> List[Tuple[str, str]]:
    """
    read the manual list of (realtime feed id, operator id) pairs. the file is
    a csv with a header row and those two columns in that order. an absent
    file means there is nothing to patch.
    """
    if patch_file is None or not os.path.exists(patch_file):
        return []

    process_logger = ProcessLogger("load_realtime_patch", patch_file=patch_file)
    process_logger.log_start()

    try:
        patch_df = pl.read_csv(patch_file, infer_schema=False)
    except (OSError, pl.exceptions.PolarsError) as exception:
        startup_error = RunStartupError(f"Unable to read realtime patch file {patch_file}")
        process_logger.log_failure(startup_error)
        raise startup_error from exception

    if patch_df.width < 2:
        startup_error = RunStartupError(f"Realtime patch file {patch_file} needs two columns")
        process_logger.log_failure(startup_error)
        raise startup_error

    realtime_column, operator_column = patch_df.columns[:2]
    patch_df = patch_df.select(
        pl.col(realtime_column).str.strip_chars().alias("realtime_feed_id"),
        pl.col(operator_column).str.strip_chars().alias("operator_id"),
    ).drop_nulls()

    pairs = list(patch_df.unique(maintain_order=True).iter_rows())

    process_logger.add_metadata(patch_count=len(pairs))
    process_logger.log_complete()

    return pairs
