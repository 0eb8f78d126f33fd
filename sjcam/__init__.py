"""SJCAM media sync package.

Session engine for pulling media off an action camera: the control-channel
dispatcher, the session state machine and the resumable data-channel receiver.
"""

from .dispatcher import DispatchOutcome, MessageDispatcher
from .receiver import FileTransferReceiver, TransferOutcome, TransferStatus
from .session import MediaDescriptor, SessionController, SessionPhase, SessionState

__all__ = [
    'DispatchOutcome',
    'MessageDispatcher',
    'FileTransferReceiver',
    'TransferOutcome',
    'TransferStatus',
    'MediaDescriptor',
    'SessionController',
    'SessionPhase',
    'SessionState',
]
