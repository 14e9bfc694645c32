"""Service layer modules."""

from erp_messaging.services.conversation_projector import (
    can_viewer_access_message,
    collect_message_participants,
    filter_visible_messages,
    group_conversations,
    is_conversation_visible_to_viewer,
)
from erp_messaging.services.custody_ledger import (
    build_chain_of_custody_record,
    build_custody_chain,
    build_deletion_certificate,
    verify_custody_chain,
)
from erp_messaging.services.messaging_store import MessagingStore, QueryMeta
from erp_messaging.services.retention_service import (
    apply_purge_plan,
    build_purge_plan,
    evaluate_message_lifecycle,
    resolve_retention_days,
)
from erp_messaging.services.messaging_service import (
    MembershipSessionResolver,
    MessagingService,
    SessionContext,
)
