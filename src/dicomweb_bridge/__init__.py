__version__ = '0.1.0'

from dicomweb_bridge.batch import BatchSender
from dicomweb_bridge.config import BridgeConfig, load_config
from dicomweb_bridge.resolver import ResourceResolver, ResourceSelector
from dicomweb_bridge.retrieve import RetrieveOrchestrator, RetrieveSelector
from dicomweb_bridge.status import StatusSequenceBuilder
from dicomweb_bridge.stow import StowClient, StowServer

__all__ = [
    'BatchSender',
    'BridgeConfig',
    'ResourceResolver',
    'ResourceSelector',
    'RetrieveOrchestrator',
    'RetrieveSelector',
    'StatusSequenceBuilder',
    'StowClient',
    'StowServer',
    'load_config',
]
