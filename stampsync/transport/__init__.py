"""
Transport 模块
"""

from stampsync.transport.base import Transport
from stampsync.transport.rsync import RsyncTransport

__all__ = ['Transport', 'RsyncTransport']
