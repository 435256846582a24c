"""Kernel package -- protocol handlers, ``%ai`` magic commands and protocol messages.

The reference host lives in :mod:`chatkernel.kernel.host` and is imported
from there directly.
"""

from chatkernel.kernel.kernel import ExecutionKernel, KernelShutDown, KernelState
from chatkernel.kernel.magic import HELP_TEXT, USAGE_HINT, MagicInterpreter
from chatkernel.kernel.protocol import HostContext, kernel_info

__all__ = [
    "ExecutionKernel",
    "HELP_TEXT",
    "HostContext",
    "KernelShutDown",
    "KernelState",
    "MagicInterpreter",
    "USAGE_HINT",
    "kernel_info",
]
