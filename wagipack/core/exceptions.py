"""统一异常体系

所有业务异常继承 WagipackError，展开过程中的任何失败都以此体系向上抛出，
不做本地恢复或重试。CLI 层据此输出友好提示。
"""

from __future__ import annotations


class WagipackError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(WagipackError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(WagipackError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ManifestError(WagipackError):
    """清单结构无效：未知字段、缺少字段、handler 定义不明确等"""

    code = "MANIFEST_ERROR"


class NoEntriesError(ManifestError):
    """清单中没有任何 handler / export"""

    code = "NO_ENTRIES"


class ConditionSyntaxError(ManifestError):
    """构建条件表达式语法错误

    除消息外还携带原始文本、出错位置和带 ^ 指示的诊断行。
    """

    code = "CONDITION_SYNTAX"

    def __init__(
        self,
        condition_text: str,
        offset: int,
        problem: str,
        context: str = "",
    ) -> None:
        self.condition_text = condition_text
        self.offset = offset
        self.problem = problem
        self.context = context
        self.diagnostic = f"    {condition_text}\n    {' ' * offset}^-- here"
        prefix = f"{context}: " if context else ""
        super().__init__(
            f'{prefix}无效的构建条件 "{condition_text}"，'
            f"""典型格式: "$name ==/!= 'value'"；问题: {problem}\n"""
            f"{self.diagnostic}"
        )

    def with_context(self, context: str) -> ConditionSyntaxError:
        """返回附带上下文（所属条目）的同类异常"""
        return ConditionSyntaxError(
            self.condition_text, self.offset, self.problem, context=context,
        )


class FilesystemError(WagipackError):
    """模块文件或 glob 匹配到的文件无法读取"""

    code = "FILESYSTEM_ERROR"


class DependencyError(WagipackError):
    """外部引用解析失败"""

    code = "DEPENDENCY_ERROR"


class ExternalInvoiceNotFoundError(DependencyError):
    """预取的 invoice 表中没有被引用的包"""

    code = "EXTERNAL_INVOICE_NOT_FOUND"


class ExternalHandlerNotFoundError(DependencyError):
    """被引用的包中没有指定 handler_id 的 parcel"""

    code = "EXTERNAL_HANDLER_NOT_FOUND"


class ExternalDependencyNotFoundError(DependencyError):
    """计算依赖闭包时起始 parcel 不在 invoice 中"""

    code = "EXTERNAL_DEPENDENCY_NOT_FOUND"


class FetchError(DependencyError):
    """拉取外部 invoice 失败"""

    code = "FETCH_ERROR"


class NameClashError(WagipackError):
    """本地文件与外部依赖同名"""

    code = "NAME_CLASH"

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(
            "本地文件与外部依赖的 parcel 重名: " + ", ".join(names)
        )
