"""Transition map defining all valid (state, event) -> state mappings."""

from enum import StrEnum

from llmbox.domain.types import PipelineState


class PipelineEvent(StrEnum):
    """Events that move one webhook invocation through the pipeline."""

    PARSE = "parse"
    CHECK_QUOTA = "check_quota"
    ALLOW = "allow"
    BLOCK = "block"
    INVOKE_MODEL = "invoke_model"
    SUCCEED = "succeed"
    FAIL = "fail"
    SELECT_TEMPLATE = "select_template"
    COMPOSE = "compose"
    SEND = "send"
    SEND_FAIL = "send_fail"
    ACKNOWLEDGE = "acknowledge"


# All valid (current_state, event_string) -> next_state mappings.
# Any pair not in this dict is an invalid transition.
TRANSITIONS: dict[tuple[PipelineState, str], PipelineState] = {
    (PipelineState.RECEIVED, PipelineEvent.PARSE): PipelineState.PARSED,
    (PipelineState.PARSED, PipelineEvent.CHECK_QUOTA): PipelineState.QUOTA_CHECKED,
    (PipelineState.QUOTA_CHECKED, PipelineEvent.ALLOW): PipelineState.ALLOWED,
    (PipelineState.QUOTA_CHECKED, PipelineEvent.BLOCK): PipelineState.BLOCKED,
    # Blocked requests get a quota or subscription notice instead of a model reply
    (PipelineState.BLOCKED, PipelineEvent.COMPOSE): PipelineState.COMPOSED,
    (PipelineState.ALLOWED, PipelineEvent.INVOKE_MODEL): PipelineState.MODEL_INVOKED,
    (PipelineState.MODEL_INVOKED, PipelineEvent.SUCCEED): PipelineState.SUCCEEDED,
    (PipelineState.MODEL_INVOKED, PipelineEvent.FAIL): PipelineState.FAILED,
    (PipelineState.SUCCEEDED, PipelineEvent.COMPOSE): PipelineState.COMPOSED,
    # Internal faults before a reply exists fall back to the generic apology
    (PipelineState.PARSED, PipelineEvent.FAIL): PipelineState.FAILED,
    (PipelineState.QUOTA_CHECKED, PipelineEvent.FAIL): PipelineState.FAILED,
    (PipelineState.ALLOWED, PipelineEvent.FAIL): PipelineState.FAILED,
    (PipelineState.BLOCKED, PipelineEvent.FAIL): PipelineState.FAILED,
    (PipelineState.SUCCEEDED, PipelineEvent.FAIL): PipelineState.FAILED,
    (PipelineState.FAILED, PipelineEvent.SELECT_TEMPLATE): PipelineState.ERROR_TEMPLATE_SELECTED,
    (PipelineState.ERROR_TEMPLATE_SELECTED, PipelineEvent.COMPOSE): PipelineState.COMPOSED,
    (PipelineState.COMPOSED, PipelineEvent.SEND): PipelineState.SENT,
    (PipelineState.COMPOSED, PipelineEvent.SEND_FAIL): PipelineState.SEND_FAILED,
    (PipelineState.SENT, PipelineEvent.ACKNOWLEDGE): PipelineState.ACKNOWLEDGED,
    (PipelineState.SEND_FAILED, PipelineEvent.ACKNOWLEDGE): PipelineState.ACKNOWLEDGED,
}

# States that reject all events -- no outgoing transitions allowed.
TERMINAL_STATES: frozenset[PipelineState] = frozenset({PipelineState.ACKNOWLEDGED})
