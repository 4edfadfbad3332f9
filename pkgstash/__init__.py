"""pkgstash - 离线安装用的包下载与缓存工具"""

__version__ = "0.3.0"
