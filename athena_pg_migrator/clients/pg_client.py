import threading
import time
from contextlib import contextmanager
from typing import Dict, Optional

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

DEFAULT_MAX_CONNECTIONS = 20
DEFAULT_IDLE_TIMEOUT = 30
DEFAULT_CONNECT_TIMEOUT = 20


class PGClientManager:
    """
    PostgreSQL连接池管理器

    连接池满时调用方排队等待，而不是直接报错；
    空闲超过idle_timeout的连接在下次取用时关闭并重建。
    """
    
    def __init__(self):
        self.pool = None
        self._slots = None
        self._idle_timeout = DEFAULT_IDLE_TIMEOUT
        self._last_used: Dict[object, float] = {}
        self._lock = threading.Lock()
    
    def create_pool(self,
            host: str,
            port: int,
            user: str,
            password: str,
            database: str,
            max_connections: int = DEFAULT_MAX_CONNECTIONS,
            idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
            connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    ) -> ThreadedConnectionPool:
        """创建连接池"""
        try:
            pool = ThreadedConnectionPool(
                minconn=1,
                maxconn=max_connections,
                host=host,
                port=port,
                user=user,
                password=password,
                dbname=database,
                connect_timeout=connect_timeout
            )
        except psycopg2.Error as e:
            raise RuntimeError(f"PostgreSQL连接失败：{str(e)}") from e
        self.attach_pool(pool, max_connections, idle_timeout)
        return pool

    def attach_pool(self, pool, max_connections: int, idle_timeout: float = DEFAULT_IDLE_TIMEOUT):
        """绑定已创建的连接池"""
        self.pool = pool
        self._slots = threading.BoundedSemaphore(max_connections)
        self._idle_timeout = idle_timeout
        self._last_used = {}

    def acquire(self, timeout: Optional[float] = None):
        """从连接池获取连接，连接池耗尽时阻塞等待"""
        if self.pool is None:
            raise RuntimeError("连接池未初始化")
        if not self._slots.acquire(timeout=timeout):
            raise TimeoutError(f"等待数据库连接超时（{timeout}秒）")
        try:
            conn = self.pool.getconn()
            with self._lock:
                last_used = self._last_used.pop(conn, None)
            if conn.closed or (last_used is not None and time.monotonic() - last_used > self._idle_timeout):
                # 丢弃失效/空闲过久的连接
                self.pool.putconn(conn, close=True)
                conn = self.pool.getconn()
            return conn
        except Exception:
            self._slots.release()
            raise

    def release(self, conn):
        """归还连接"""
        try:
            with self._lock:
                self._last_used[conn] = time.monotonic()
            self.pool.putconn(conn, close=bool(conn.closed))
            # 连接池可能直接关闭归还的连接（超出minconn时），此类连接不再记录
            if conn.closed:
                with self._lock:
                    self._last_used.pop(conn, None)
        finally:
            self._slots.release()

    @contextmanager
    def connection(self):
        """获取连接，退出时无论成功失败都归还且只归还一次"""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)
    
    def close(self):
        """关闭连接池"""
        if self.pool:
            self.pool.closeall()
            self.pool = None
