"""
服务层：写入路径、远端客户端、联网探测、同步编排与调度
"""

from .connectivity import ConnectivityChecker, HttpConnectivityChecker, StaticConnectivity
from .note_repository import NotesRepository
from .orchestrator import SyncOrchestrator
from .pusher import ChangePusher
from .remote_client import RemoteNotesClient
from .scheduler import SyncScheduler

__all__ = [
    'ConnectivityChecker',
    'HttpConnectivityChecker',
    'StaticConnectivity',
    'NotesRepository',
    'SyncOrchestrator',
    'ChangePusher',
    'RemoteNotesClient',
    'SyncScheduler',
]
