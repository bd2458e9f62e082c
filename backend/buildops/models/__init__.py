from .projects import Project, Contractor, ProjectContractor, LineItem, ChangeOrder
from .payments import (
    PaymentApplication,
    LineItemProgress,
    PaymentDocument,
    PaymentSmsConversation,
    PaymentApprovalLog,
)
from .communications import DailyLogRequest, SmsMessage

__all__ = [
    'Project', 'Contractor', 'ProjectContractor', 'LineItem', 'ChangeOrder',
    'PaymentApplication', 'LineItemProgress', 'PaymentDocument',
    'PaymentSmsConversation', 'PaymentApprovalLog',
    'DailyLogRequest', 'SmsMessage',
]
