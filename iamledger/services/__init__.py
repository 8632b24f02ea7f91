from .identity_store import IdentityStore
from .audit_log import AuditLog
from .access_evaluator import AccessEvaluator, LoginDecision, can_login
from .provisioning import (
    Committed,
    PairLocks,
    ProvisioningAction,
    ProvisioningRequest,
    ProvisioningState,
    ProvisioningWorkflow,
    Rejected,
)

__all__ = [
    'IdentityStore',
    'AuditLog',
    'AccessEvaluator',
    'LoginDecision',
    'can_login',
    'Committed',
    'PairLocks',
    'ProvisioningAction',
    'ProvisioningRequest',
    'ProvisioningState',
    'ProvisioningWorkflow',
    'Rejected',
]
