"""
目标数据库客户端

包含客户端接口、PostgreSQL 客户端（psycopg2 连接池）和 Spark SQL 适配器
"""

from .base import DatabaseClient, wrap_limit_zero
from .postgres import PostgresClient
from .spark import SparkClient

__all__ = [
    "DatabaseClient",
    "PostgresClient",
    "SparkClient",
    "wrap_limit_zero",
]
