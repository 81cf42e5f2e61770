"""
签名状态模块 - 进程级单例的定时签名更新任务。
"""

from relaybot.heartbeat.service import StatusService, compose_status, period_of_day

__all__ = ["StatusService", "compose_status", "period_of_day"]
