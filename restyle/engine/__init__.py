"""
Local inference engine: port probing, binary lookup, process supervision
and activation.
"""

from .activation import ActivationCoordinator, ActivationState
from .binaries import candidate_paths, platform_dir_name, resolve_engine_binary
from .ports import find_free_port, port_in_use, port_is_free
from .supervisor import (
    ActivationSelection,
    EngineProcess,
    EngineState,
    EngineSupervisor,
    build_engine_command,
)

__all__ = [
    'ActivationCoordinator',
    'ActivationSelection',
    'ActivationState',
    'EngineProcess',
    'EngineState',
    'EngineSupervisor',
    'build_engine_command',
    'candidate_paths',
    'find_free_port',
    'platform_dir_name',
    'port_in_use',
    'port_is_free',
    'resolve_engine_binary',
]
