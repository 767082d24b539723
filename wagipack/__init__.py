"""wagipack - WAGI 应用打包工具

读取应用清单，展开为内容寻址的包描述 (invoice)。
"""

__version__ = "0.4.0"
