"""源码构建

executor 在父进程中启动隔离的构建子进程并解析其结果，
worker 是子进程入口，执行配方的构建步骤。
"""

from cellar.services.build.executor import BuildExecutor, BuildRequest

__all__ = ["BuildExecutor", "BuildRequest"]
