"""
The Supervisor package.
Runs a child process under a heartbeat deadline.

This package contains the HeartbeatSupervisor and its helper modules, which
together launch the child, listen for UDP heartbeats, watch the deadline,
react to termination signals and kill the child's process tree.
"""
from .heartbeat import HeartbeatClock, HeartbeatListener
from .launcher import ChildHandle, LaunchError, launch_child
from .monitor import MonitorOutcome, OutcomeCause, TimeoutMonitor
from .shutdown import ProcessTerminator
from .signals import ShutdownRequest, ShutdownSignalHandler
from .supervisor import HeartbeatSupervisor

__all__ = [
    'ChildHandle', 'HeartbeatClock', 'HeartbeatListener', 'HeartbeatSupervisor',
    'LaunchError', 'MonitorOutcome', 'OutcomeCause', 'ProcessTerminator',
    'ShutdownRequest', 'ShutdownSignalHandler', 'TimeoutMonitor', 'launch_child',
]
