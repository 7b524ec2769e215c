from .request import ApprovalRequest, InvoiceData, RequestSerial, RequestStatus
from .gl_coding import GLCodingUpload, GLCodingEntry
from .dictionary import AccountMaster, Facility, ApproverList
from .workflow import WorkflowStep, WorkflowHistory
