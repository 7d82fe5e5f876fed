# backend/app/domain/handoff_states.py
from __future__ import annotations

# -----------------------------------------------------------------------------
# Handoff protocol states
# -----------------------------------------------------------------------------
# The persisted `access_codes.state` column records how far a handoff got.
# It is a progress marker, not a lock: the only exclusive transition is the
# final atomic mark-used write (see code_store.mark_used).
#
#   issued -> claim_pending -> data_transferring -> role_swapped
#          -> subscriptions_cancelled -> complete
#
# `rejected` is reported to callers, never persisted (the code stays retryable).
# `aborted_by_owner` is written to the audit trail when the row is deleted.
# -----------------------------------------------------------------------------

ISSUED = "issued"
CLAIM_PENDING = "claim_pending"
DATA_TRANSFERRING = "data_transferring"
ROLE_SWAPPED = "role_swapped"
SUBSCRIPTIONS_CANCELLED = "subscriptions_cancelled"
COMPLETE = "complete"

REJECTED = "rejected"
ABORTED_BY_OWNER = "aborted_by_owner"

STATE_ORDER = [ISSUED, CLAIM_PENDING, DATA_TRANSFERRING, ROLE_SWAPPED, SUBSCRIPTIONS_CANCELLED, COMPLETE]

# owner may still withdraw the code
CANCELLABLE_STATES = (ISSUED, CLAIM_PENDING)

ACTION_CHANGE_ROLE = "change_role"
ACTION_DELETE_ACCOUNT = "delete_account"
ACTION_TYPES = frozenset({ACTION_CHANGE_ROLE, ACTION_DELETE_ACCOUNT})

ROLE_RESIDENT = "resident"
ROLE_SYNDIC = "syndic"


def state_rank(state: str) -> int:
    try:
        return STATE_ORDER.index(state)
    except ValueError:
        return 0


def states_before(target: str) -> list[str]:
    """States from which `target` is a forward (or same-state) move."""
    return [s for s in STATE_ORDER if state_rank(s) <= state_rank(target)]
