"""
Pending history metadata attached to a single mutation.

Metadata travels alongside the mutation call. Hosts that cannot pass it
explicitly may instead leave a mapping under the reserved document key
(HistoryConfig.metadata_field); it is read from there and removed once
the mutation's history record is committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, MutableMapping, Optional, Union

from .config import HistoryConfig
from .versioning import BumpClass


@dataclass(frozen=True)
class HistoryMetadata:
    """Context for one mutation's history record.

    Attributes:
        event: Event name
        type: Bump class (major/minor/patch), major when absent
        reason: Free-text reason
        data: Arbitrary structured data
        user: Actor reference
        account: Account reference
        method: Method tag (e.g. "delete")
    """

    event: Optional[str] = None
    type: Union[BumpClass, str, None] = None
    reason: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    user: Any = None
    account: Any = None
    method: Optional[str] = None

    @property
    def bump(self) -> BumpClass:
        return BumpClass.parse(self.type)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        config: HistoryConfig,
    ) -> HistoryMetadata:
        """Build from a side-channel mapping keyed by the bound field names."""
        return cls(
            event=data.get("event"),
            type=data.get("type"),
            reason=data.get("reason"),
            data=data.get("data"),
            user=data.get(config.user_field),
            account=data.get(config.account_field),
            method=data.get(config.method_field),
        )


def resolve_metadata(
    document: Mapping[str, Any],
    metadata: Union[HistoryMetadata, Mapping[str, Any], None],
    config: HistoryConfig,
) -> Optional[HistoryMetadata]:
    """Pick the metadata for a mutation.

    Explicit metadata wins; otherwise the document's side channel is used.
    """
    if isinstance(metadata, HistoryMetadata):
        return metadata
    if metadata is not None:
        return HistoryMetadata.from_mapping(metadata, config)

    pending = document.get(config.metadata_field)
    if isinstance(pending, Mapping):
        return HistoryMetadata.from_mapping(pending, config)
    return None


def clear_metadata(document: MutableMapping[str, Any], config: HistoryConfig) -> None:
    """Drop the side-channel metadata so it cannot leak into the next mutation."""
    document.pop(config.metadata_field, None)
