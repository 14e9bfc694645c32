"""Conversation grouping and viewer visibility over flat message lists.

Used by the messaging service for server-side filtering; the output is
plain data any presentation layer can render as-is.

Every walk up a parent chain tracks visited ids and is bounded by a
maximum depth, so malformed (cyclic) chains terminate.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from erp_messaging.db.enums import VisibilityScope
from erp_messaging.utils.datetime_parsing import isoformat_utc, to_utc


GENERAL_CONVERSATION_ID = "general"
GENERAL_CONVERSATION_TITLE = "General"
UNTITLED_CONVERSATION_TITLE = "Untitled topic"
TOPIC_MAX_LENGTH = 120
DEFAULT_MAX_CHAIN_DEPTH = 256
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def normalize_id(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text in ("0", "None", "null"):
        return None
    return text


def _sanitize_topic(value: Any) -> str:
    return " ".join(str(value or "").split())[:TOPIC_MAX_LENGTH]


def resolve_visibility_scope(message: Mapping[str, Any]) -> str:
    return str(message.get("visibility_scope") or VisibilityScope.COMPANY.value).lower()


def collect_message_participants(message: Mapping[str, Any]) -> list[str]:
    """Author plus explicit recipients, de-duplicated in order."""
    ids: list[str] = []
    candidates = [message.get("author_empid")]
    recipients = message.get("recipient_empids") or []
    if isinstance(recipients, str):
        recipients = recipients.split(",")
    candidates.extend(recipients)
    for value in candidates:
        empid = normalize_id(value)
        if empid and empid not in ids:
            ids.append(empid)
    return ids


def can_viewer_access_message(message: Mapping[str, Any] | None, viewer_empid: Any) -> bool:
    if not message:
        return False
    if resolve_visibility_scope(message) != VisibilityScope.PRIVATE.value:
        return True
    viewer = normalize_id(viewer_empid)
    if not viewer:
        return False
    return viewer in collect_message_participants(message)


def is_conversation_visible_to_viewer(conversation: Mapping[str, Any] | None, viewer_empid: Any) -> bool:
    if not conversation:
        return False
    if conversation.get("visibility_scope") != VisibilityScope.PRIVATE.value:
        return True
    viewer = normalize_id(viewer_empid)
    if not viewer:
        return False
    return viewer in conversation.get("participant_empids", [])


def _ancestor_key(message: Mapping[str, Any], by_id: Mapping[str, Mapping[str, Any]]) -> str | None:
    parent_id = normalize_id(message.get("parent_message_id"))
    if parent_id and parent_id in by_id:
        return parent_id
    conversation_id = normalize_id(message.get("conversation_id"))
    if conversation_id and conversation_id != normalize_id(message.get("id")):
        return conversation_id
    return parent_id


def filter_visible_messages(
    messages: Sequence[Mapping[str, Any]],
    viewer_empid: Any,
    max_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
) -> list[Mapping[str, Any]]:
    """Keep messages visible to the viewer.

    A message is visible when it, or any ancestor up its parent (then
    conversation root) chain, is visible. Results are memoized per id.
    With no viewer, nothing is filtered.
    """
    if not normalize_id(viewer_empid):
        return list(messages)

    by_id = {normalize_id(m.get("id")): m for m in messages}
    memo: dict[str, bool] = {}

    def visible(message: Mapping[str, Any]) -> bool:
        chain: list[str] = []
        current: Mapping[str, Any] | None = message
        result = False
        while current is not None and len(chain) <= max_depth:
            key = normalize_id(current.get("id"))
            if key in memo:
                result = memo[key]
                break
            if key in chain:
                break
            chain.append(key)
            if can_viewer_access_message(current, viewer_empid):
                result = True
                break
            ancestor = _ancestor_key(current, by_id)
            current = by_id.get(ancestor) if ancestor else None
        for key in chain:
            memo[key] = result
        return result

    return [m for m in messages if visible(m)]


def _extract_link(message: Mapping[str, Any]) -> tuple[str | None, str | None]:
    linked_type = message.get("linked_type") or None
    linked_id = normalize_id(message.get("linked_id"))
    if linked_type and linked_id:
        return linked_type, linked_id
    return None, None


def is_general_message(message: Mapping[str, Any]) -> bool:
    has_thread_pointer = bool(
        normalize_id(message.get("conversation_id")) or normalize_id(message.get("parent_message_id"))
    )
    linked_type, _ = _extract_link(message)
    return (
        not has_thread_pointer
        and not linked_type
        and not _sanitize_topic(message.get("topic"))
        and resolve_visibility_scope(message) == VisibilityScope.COMPANY.value
    )


def resolve_root_message_id(
    message: Mapping[str, Any],
    by_id: Mapping[str, Mapping[str, Any]],
    max_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
) -> str | None:
    conversation_id = normalize_id(message.get("conversation_id"))
    if conversation_id:
        return conversation_id
    current = message
    visited: set[str] = set()
    for _ in range(max_depth):
        parent_id = normalize_id(current.get("parent_message_id"))
        if not parent_id:
            return normalize_id(current.get("id"))
        if parent_id in visited:
            return parent_id
        visited.add(parent_id)
        parent = by_id.get(parent_id)
        if parent is None:
            return parent_id
        current = parent
    return normalize_id(current.get("id"))


def _new_bucket(conversation_id: str, **fields: Any) -> dict[str, Any]:
    bucket = {
        "id": conversation_id,
        "root_message_id": None,
        "participant_empids": [],
        "visibility_scope": VisibilityScope.COMPANY.value,
        "is_general": False,
        "title": UNTITLED_CONVERSATION_TITLE,
        "last_message_at": None,
        "linked_type": None,
        "linked_id": None,
        "message_ids": [],
    }
    bucket.update(fields)
    return bucket


def _general_bucket() -> dict[str, Any]:
    return _new_bucket(GENERAL_CONVERSATION_ID, is_general=True, title=GENERAL_CONVERSATION_TITLE)


def _touch(bucket: dict[str, Any], message: Mapping[str, Any]) -> None:
    bucket["message_ids"].append(message.get("id"))
    created_at = to_utc(message.get("created_at"))
    current = bucket["last_message_at"]
    if created_at and (current is None or created_at > current):
        bucket["last_message_at"] = created_at


def _conversation_title(root: Mapping[str, Any]) -> str:
    topic = _sanitize_topic(root.get("topic"))
    if topic:
        return topic
    linked_type, linked_id = _extract_link(root)
    if linked_type == "transaction" and linked_id:
        return f"Transaction #{linked_id}"
    return UNTITLED_CONVERSATION_TITLE


def group_conversations(
    messages: Sequence[Mapping[str, Any]],
    viewer_empid: Any = None,
    participant_overrides: Mapping[str, Iterable[Any]] | None = None,
) -> list[dict[str, Any]]:
    """Project messages into conversations visible to the viewer.

    The general bucket is always present and first; other conversations
    are ordered by last_message_at, newest first.
    """
    by_id = {normalize_id(m.get("id")): m for m in messages}
    buckets: dict[str, dict[str, Any]] = {GENERAL_CONVERSATION_ID: _general_bucket()}

    for message in messages:
        if is_general_message(message):
            _touch(buckets[GENERAL_CONVERSATION_ID], message)
            continue

        root_id = resolve_root_message_id(message, by_id)
        if not root_id:
            continue
        conversation_id = f"message:{root_id}"
        root = by_id.get(root_id) or message
        if conversation_id not in buckets:
            linked_type, linked_id = _extract_link(root)
            buckets[conversation_id] = _new_bucket(
                conversation_id,
                root_message_id=int(root_id) if root_id.isdigit() else root_id,
                visibility_scope=resolve_visibility_scope(root),
                title=_conversation_title(root),
                linked_type=linked_type,
                linked_id=linked_id,
            )
        bucket = buckets[conversation_id]
        _touch(bucket, message)
        if resolve_visibility_scope(message) == VisibilityScope.PRIVATE.value:
            for empid in collect_message_participants(message):
                if empid not in bucket["participant_empids"]:
                    bucket["participant_empids"].append(empid)

    for conversation_id, extra in (participant_overrides or {}).items():
        bucket = buckets.get(conversation_id)
        if bucket is None or bucket["is_general"]:
            continue
        for value in extra:
            empid = normalize_id(value)
            if empid and empid not in bucket["participant_empids"]:
                bucket["participant_empids"].append(empid)

    projected = [
        bucket for bucket in buckets.values()
        if not normalize_id(viewer_empid) or is_conversation_visible_to_viewer(bucket, viewer_empid)
    ]

    general = [b for b in projected if b["is_general"]]
    others = [b for b in projected if not b["is_general"]]
    others.sort(key=lambda b: b["last_message_at"] or _OLDEST, reverse=True)

    result = []
    for bucket in general + others:
        item = dict(bucket)
        item["last_message_at"] = isoformat_utc(bucket["last_message_at"])
        item["message_count"] = len(bucket["message_ids"])
        result.append(item)
    return result
