"""Runtime wiring: host loops, periodic jobs and config bootstrap."""

from .bootstrap import build_host, build_pools, build_sinks
from .host import MonitorHost
from .jobs import PeriodicJobs

__all__ = ["MonitorHost", "PeriodicJobs", "build_host", "build_pools", "build_sinks"]
