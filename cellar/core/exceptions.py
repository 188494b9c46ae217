"""统一异常体系

所有业务异常继承 CellarError，并携带结构化字段（包名、底层原因等），
外层（CLI / 批量安装汇总）可直接通过 to_dict() 重新上报，无需解析文本。
"""

from __future__ import annotations

from typing import Any


class CellarError(Exception):
    """安装引擎基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ConfigError(CellarError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(CellarError):
    """输入数据（配方定义、选项等）校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "details": list(self.details)}


class UsageError(CellarError):
    """命令行用法错误"""

    code = "USAGE_ERROR"


class FormulaUnspecifiedError(UsageError):
    """命令需要至少一个配方名"""

    def __init__(self) -> None:
        super().__init__("该命令需要至少一个配方名参数")


# =========================================================================
# 引用解析
# =========================================================================


class FormulaUnavailableError(CellarError):
    """配方名无法定位；dependent 记录是哪个配方引用了它"""

    code = "FORMULA_UNAVAILABLE"

    def __init__(self, name: str, dependent: str | None = None) -> None:
        self.name = name
        self.dependent = dependent
        super().__init__(self._render())

    def _render(self) -> str:
        if self.dependent and self.dependent != self.name:
            return f"找不到配方: {self.name}（被 {self.dependent} 依赖）"
        return f"找不到配方: {self.name}"

    def __str__(self) -> str:
        # dependent 可能在抛出后才被补充
        return self._render()

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "name": self.name, "dependent": self.dependent}


class AmbiguousReferenceError(CellarError):
    """同一个名字在多个配方仓库中都能找到"""

    code = "AMBIGUOUS_REFERENCE"

    def __init__(self, name: str, candidates: list[str]) -> None:
        self.name = name
        self.candidates = candidates
        listing = "".join(f"\n  * {c}" for c in candidates)
        super().__init__(
            f"多个配方仓库中都存在 {name}:{listing}\n"
            f"请使用完整名称，例如 {candidates[0]}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "name": self.name, "candidates": list(self.candidates)}


# =========================================================================
# 安装前检查
# =========================================================================


class UnsatisfiedRequirementsError(CellarError):
    """存在未满足的致命前置条件；一次性列出全部条目"""

    code = "UNSATISFIED_REQUIREMENTS"

    def __init__(self, formula: str, requirements: list[tuple[str, Any]]) -> None:
        self.formula = formula
        # (dependent, requirement)
        self.requirements = requirements
        lines = "".join(f"\n  {dep}: {req.message}" for dep, req in requirements)
        super().__init__(
            f"{formula} 有 {len(requirements)} 个未满足的前置条件:{lines}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "formula": self.formula,
            "requirements": [
                {"dependent": dep, "name": req.name, "message": req.message}
                for dep, req in self.requirements
            ],
        }


class OperationInProgressError(CellarError):
    """另一个进程正在操作同一个配方"""

    code = "OPERATION_IN_PROGRESS"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} 正在被另一个进程操作，请等待其完成后重试")


class CannotInstallFormulaError(CellarError):
    """安装前置检查失败（已有其他版本链接、依赖未链接等）"""

    code = "CANNOT_INSTALL"


class FormulaAlreadyInstalledError(CellarError):
    """目标版本已安装；属于提示而非错误"""

    code = "ALREADY_INSTALLED"

    def __init__(self, name: str, version: str, linked: bool = True) -> None:
        self.name = name
        self.version = version
        self.linked = linked
        if linked:
            msg = f"{name}-{version} 已安装"
        else:
            msg = f"{name}-{version} 已安装，但尚未链接"
        super().__init__(msg)


class AlreadyAttemptedError(CellarError):
    """本次运行中已尝试过安装该配方；调用方应视为已处理"""

    code = "ALREADY_ATTEMPTED"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"本次运行已尝试安装 {name}")


class FormulaConflictError(CellarError):
    """声明冲突的配方当前已链接"""

    code = "FORMULA_CONFLICT"

    def __init__(self, formula: str, conflicts: list[Any]) -> None:
        self.formula = formula
        self.conflicts = conflicts
        items = []
        for c in conflicts:
            items.append(f"  {c.name}: {c.reason}" if c.reason else f"  {c.name}")
        super().__init__(
            f"无法安装 {formula}，以下 {len(conflicts)} 个冲突配方已链接:\n"
            + "\n".join(items)
            + "\n请先 unlink 冲突配方，或使用 --force 忽略"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "formula": self.formula,
            "conflicts": [c.name for c in self.conflicts],
        }


# =========================================================================
# 构建 / 下载 / 执行
# =========================================================================


class ExecutionError(CellarError):
    """外部命令执行失败"""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, cmd: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.cmd = cmd
        self.returncode = returncode

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "cmd": self.cmd, "returncode": self.returncode}


class BuildError(CellarError):
    """构建失败；kind/fields 保留构建子进程上报的原始错误类型与字段"""

    code = "BUILD_ERROR"

    def __init__(
        self,
        formula: str,
        message: str,
        *,
        kind: str = "BuildError",
        fields: dict[str, Any] | None = None,
        logs: list[str] | None = None,
    ) -> None:
        super().__init__(f"{formula} 构建失败: {message}")
        self.formula = formula
        self.kind = kind
        self.fields = fields or {}
        self.logs = logs or []

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "formula": self.formula,
            "kind": self.kind,
            "fields": dict(self.fields),
            "logs": list(self.logs),
        }


class DownloadError(CellarError):
    """源码包或预编译包下载失败"""

    code = "DOWNLOAD_ERROR"

    def __init__(self, url: str, cause: str) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"下载失败: {url} - {cause}")


class ChecksumMismatchError(DownloadError):
    """下载文件的 SHA-256 校验和不匹配"""

    code = "CHECKSUM_MISMATCH"

    def __init__(self, path: str, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(path, f"校验和不匹配: 期望 {expected}, 实际 {actual}")


# =========================================================================
# Keg / 链接
# =========================================================================


class LinkError(CellarError):
    """把 keg 链接进共享前缀时失败"""

    code = "LINK_ERROR"

    def __init__(self, keg: str, src: str, dst: str, cause: str) -> None:
        self.keg = keg
        self.src = src
        self.dst = dst
        self.cause = cause
        super().__init__(f"无法链接 {src} -> {dst}: {cause}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "keg": self.keg, "src": self.src, "dst": self.dst}


class ConflictError(LinkError):
    """目标路径已被真实文件或其他配方的链接占用"""

    code = "LINK_CONFLICT"

    def __init__(
        self, keg: str, src: str, dst: str,
        owner: str | None = None, conflicts: list[str] | None = None,
    ) -> None:
        self.owner = owner
        self.conflicts = conflicts or [dst]
        cause = f"目标已存在，属于 {owner}" if owner else "目标已存在"
        super().__init__(keg, src, dst, cause)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "owner": self.owner, "conflicts": list(self.conflicts)}


class NoSuchKegError(CellarError):
    """指定名称没有任何已安装的 keg"""

    code = "NO_SUCH_KEG"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"没有已安装的 keg: {name}")


class MultipleVersionsInstalledError(CellarError):
    """存在多个已安装版本，需要用户明确选择"""

    code = "MULTIPLE_VERSIONS"

    def __init__(self, name: str, versions: list[str]) -> None:
        self.name = name
        self.versions = versions
        super().__init__(f"{name} 安装了多个版本: {', '.join(versions)}")
