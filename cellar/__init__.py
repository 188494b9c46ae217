"""cellar - 源码/二进制包安装引擎"""

__version__ = "0.1.0"
