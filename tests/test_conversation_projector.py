"""
Conversation projection tests.

Tests cover:
- General bucket always present and first
- Thread grouping and titles
- Private visibility inherited by replies
- Termination on cyclic parent chains
"""

from datetime import datetime, timedelta, timezone

from erp_messaging.services.conversation_projector import (
    can_viewer_access_message,
    collect_message_participants,
    filter_visible_messages,
    group_conversations,
    resolve_root_message_id,
)


T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _msg(message_id, minutes=0, **extra):
    data = {
        "id": message_id,
        "company_id": 1,
        "author_empid": "E1",
        "created_at": T0 + timedelta(minutes=minutes),
        "visibility_scope": "company",
    }
    data.update(extra)
    return data


# =============================================================================
# Grouping
# =============================================================================


def test_general_bucket_present_when_empty():
    conversations = group_conversations([])
    assert len(conversations) == 1
    assert conversations[0]["id"] == "general"
    assert conversations[0]["is_general"] is True
    assert conversations[0]["message_count"] == 0
    assert conversations[0]["last_message_at"] is None


def test_general_first_then_newest_thread():
    messages = [
        _msg(1, 0),
        _msg(2, 1, topic="Budget"),
        _msg(3, 2, parent_message_id=2, conversation_id=2),
        _msg(4, 3, linked_type="transaction", linked_id=55),
        _msg(5, 10),
    ]
    conversations = group_conversations(messages)
    assert [c["id"] for c in conversations] == ["general", "message:4", "message:2"]
    general, tx, budget = conversations
    assert general["message_ids"] == [1, 5]
    assert budget["title"] == "Budget"
    assert budget["message_ids"] == [2, 3]
    assert budget["root_message_id"] == 2
    assert tx["title"] == "Transaction #55"
    assert tx["linked_id"] == "55"


def test_untitled_topic_default():
    conversations = group_conversations([_msg(1, topic="  "), _msg(2, parent_message_id=1)])
    assert conversations[1]["title"] == "Untitled topic"


def test_cyclic_chain_terminates():
    messages = [_msg(1, parent_message_id=2), _msg(2, parent_message_id=1)]
    by_id = {"1": messages[0], "2": messages[1]}
    assert resolve_root_message_id(messages[0], by_id) in {"1", "2"}
    assert len(group_conversations(messages)) >= 2
    assert filter_visible_messages(
        [_msg(1, parent_message_id=2, visibility_scope="private"),
         _msg(2, parent_message_id=1, visibility_scope="private")],
        "E9",
    ) == []


# =============================================================================
# Visibility
# =============================================================================


def test_participants_include_author_and_recipients():
    msg = _msg(1, recipient_empids=["E2", "E1", " E3 ", None])
    assert collect_message_participants(msg) == ["E1", "E2", "E3"]


def test_private_message_access():
    msg = _msg(1, visibility_scope="private", recipient_empids=["E2"])
    assert can_viewer_access_message(msg, "E2") is True
    assert can_viewer_access_message(msg, "E3") is False
    assert can_viewer_access_message(msg, None) is False
    assert can_viewer_access_message(_msg(2), "E3") is True


def test_private_reply_visible_through_root():
    root = _msg(1, visibility_scope="private", recipient_empids=["E2"])
    reply = _msg(2, 1, author_empid="E2", parent_message_id=1, conversation_id=1, visibility_scope="private")
    public = _msg(3, 2)

    assert filter_visible_messages([root, reply, public], "E1") == [root, reply, public]
    assert filter_visible_messages([root, reply, public], "E3") == [public]
    assert filter_visible_messages([root, reply, public], None) == [root, reply, public]


def test_private_conversation_hidden_from_outsider():
    root = _msg(1, visibility_scope="private", recipient_empids=["E2"])
    reply = _msg(2, 1, author_empid="E2", parent_message_id=1, conversation_id=1, visibility_scope="private")

    for_e2 = group_conversations([root, reply], viewer_empid="E2")
    assert [c["id"] for c in for_e2] == ["general", "message:1"]
    assert for_e2[1]["participant_empids"] == ["E1", "E2"]

    for_e3 = group_conversations([root, reply], viewer_empid="E3")
    assert [c["id"] for c in for_e3] == ["general"]


def test_participant_overrides_extend_private_bucket():
    root = _msg(1, visibility_scope="private", recipient_empids=["E2"])
    conversations = group_conversations(
        [root], viewer_empid="E3", participant_overrides={"message:1": ["E3"], "general": ["E9"]}
    )
    assert [c["id"] for c in conversations] == ["general", "message:1"]
